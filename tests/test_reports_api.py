"""
Report API tests: duplicates, child replacement, lifecycle, statistics, email
"""
from datetime import date

import httpx
import pytest

from conftest import auth_headers, report_payload
from maraude_tracker.config import settings
from maraude_tracker.models.db_models import MaraudeReport, ReportStatus
from maraude_tracker.services import email_service

MONDAY = date(2025, 9, 15)


def alert(**fields) -> dict:
    payload = {"alertType": "housing", "severity": "critical", "situationDescription": "Famille sans abri"}
    payload.update(fields)
    return payload


async def post_report(client, user, action_id, **fields):
    return await client.post("/api/reports", json=report_payload(action_id, **fields), headers=auth_headers(user))


class TestCreate:
    @pytest.mark.asyncio
    async def test_second_report_for_same_day_conflicts(self, client, volunteer, other_volunteer, action_factory):
        action = action_factory(is_recurring=False, scheduled_date=MONDAY)

        first = await post_report(client, volunteer, action.id, reportDate=MONDAY.isoformat())
        assert first.status_code == 201
        assert first.json()["status"] == "draft"

        second = await post_report(client, other_volunteer, action.id, reportDate=MONDAY.isoformat())
        assert second.status_code == 409
        body = second.json()
        assert body["details"]["existingReportId"] == first.json()["id"]
        assert body["details"]["createdBy"]["id"] == str(volunteer.id)

    @pytest.mark.asyncio
    async def test_detail_fields(self, client, volunteer, action_factory):
        action = action_factory()
        response = await post_report(client, volunteer, action.id)
        data = response.json()
        assert data["duration"] == 210
        assert data["summary"] == {
            "date": "2025-09-17", "beneficiaries": 12, "volunteers": 4, "duration": 210, "hasAlerts": False,
        }
        assert data["maraudeAction"]["association"]["name"] == "Solidarité Paris"
        assert data["creator"]["id"] == str(volunteer.id)

    @pytest.mark.asyncio
    async def test_auto_submit(self, client, volunteer, action_factory, monkeypatch):
        monkeypatch.setattr(settings, "REPORTS_AUTO_SUBMIT", True)
        response = await post_report(client, volunteer, action_factory().id)
        assert response.json()["status"] == "submitted"

    @pytest.mark.asyncio
    async def test_blank_alert_description(self, client, volunteer, action_factory):
        response = await post_report(client, volunteer, action_factory().id, alerts=[alert(situationDescription="  ")])
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_negative_counts(self, client, volunteer, action_factory):
        response = await post_report(client, volunteer, action_factory().id, beneficiariesCount=-1)
        assert response.status_code == 400
        assert "beneficiariesCount" in response.json()["details"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_report(self, client, outsider, action_factory):
        response = await post_report(client, outsider, action_factory().id)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_action(self, client, volunteer):
        response = await post_report(client, volunteer, "00000000-0000-4000-8000-000000000000")
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_patch_replaces_children(client, volunteer, action_factory, distribution_types):
    meal, hygiene, _ = distribution_types
    created = await post_report(
        client, volunteer, action_factory().id,
        distributions=[
            {"distributionTypeId": str(meal.id), "quantity": 25},
            {"distributionTypeId": str(hygiene.id), "quantity": 8, "notes": "Kits femmes"},
        ],
        alerts=[alert()],
    )
    report = created.json()
    assert len(report["distributions"]) == 2
    assert report["hasUrgentSituations"] is True
    assert report["alerts"][0]["severity"] == "critical"

    response = await client.patch(
        f"/api/reports/{report['id']}", json={"alerts": []}, headers=auth_headers(volunteer)
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["alerts"] == []
    assert updated["hasUrgentSituations"] is False
    assert {d["distributionType"]["name"] for d in updated["distributions"]} == {meal.name, hygiene.name}

    response = await client.put(
        f"/api/reports/{report['id']}",
        json={"distributions": [{"distributionTypeId": str(meal.id), "quantity": 30}]},
        headers=auth_headers(volunteer),
    )
    assert [d["quantity"] for d in response.json()["distributions"]] == [30]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_submit_validate_lock(self, client, volunteer, coordinator, action_factory):
        report_id = (await post_report(client, volunteer, action_factory().id)).json()["id"]

        response = await client.patch(f"/api/reports/{report_id}/validate", headers=auth_headers(coordinator))
        assert response.status_code == 400
        assert response.json()["error"] == "Only submitted reports can be validated"

        response = await client.patch(f"/api/reports/{report_id}/submit", headers=auth_headers(volunteer))
        assert response.json()["status"] == "submitted"

        response = await client.patch(f"/api/reports/{report_id}/submit", headers=auth_headers(volunteer))
        assert response.status_code == 400

        response = await client.patch(f"/api/reports/{report_id}/validate", headers=auth_headers(volunteer))
        assert response.status_code == 403

        response = await client.patch(f"/api/reports/{report_id}/validate", headers=auth_headers(coordinator))
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "validated"
        assert data["validator"]["id"] == str(coordinator.id)
        assert data["validationDate"] is not None

        response = await client.patch(
            f"/api/reports/{report_id}", json={"beneficiariesCount": 99}, headers=auth_headers(volunteer)
        )
        assert response.status_code == 403
        assert response.json()["error"] == "Cannot edit validated report"

        response = await client.delete(f"/api/reports/{report_id}", headers=auth_headers(coordinator))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_delete_draft(self, client, volunteer, action_factory):
        report_id = (await post_report(client, volunteer, action_factory().id)).json()["id"]
        response = await client.delete(f"/api/reports/{report_id}", headers=auth_headers(volunteer))
        assert response.status_code == 200
        response = await client.get(f"/api/reports/{report_id}", headers=auth_headers(volunteer))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_peer_cannot_delete(self, client, volunteer, other_volunteer, action_factory):
        report_id = (await post_report(client, volunteer, action_factory().id)).json()["id"]
        response = await client.delete(f"/api/reports/{report_id}", headers=auth_headers(other_volunteer))
        assert response.status_code == 403


class TestReads:
    @pytest.mark.asyncio
    async def test_listing_is_scoped_to_association(self, client, volunteer, outsider, admin, action_factory,
                                                    other_association):
        await post_report(client, volunteer, action_factory().id)
        lyon = action_factory(association_id=other_association.id, created_by=outsider.id)
        await post_report(client, outsider, lyon.id, reportDate="2025-09-10")

        mine = (await client.get("/api/reports", headers=auth_headers(volunteer))).json()
        assert mine["pagination"]["total"] == 1
        assert mine["reports"][0]["maraudeActionId"] != str(lyon.id)

        everything = (await client.get("/api/reports", headers=auth_headers(admin))).json()
        assert [r["reportDate"] for r in everything["reports"]] == ["2025-09-17", "2025-09-10"]

    @pytest.mark.asyncio
    async def test_filters(self, client, volunteer, action_factory):
        action = action_factory()
        await post_report(client, volunteer, action.id, alerts=[alert()])
        await post_report(client, volunteer, action.id, reportDate="2025-09-10")

        data = (await client.get("/api/reports", params={"hasAlerts": "true"}, headers=auth_headers(volunteer))).json()
        assert [r["reportDate"] for r in data["reports"]] == ["2025-09-17"]

        data = (await client.get(
            "/api/reports", params={"startDate": "2025-09-01", "endDate": "2025-09-12"}, headers=auth_headers(volunteer)
        )).json()
        assert [r["reportDate"] for r in data["reports"]] == ["2025-09-10"]

    @pytest.mark.asyncio
    async def test_outsider_cannot_read(self, client, volunteer, outsider, action_factory):
        report_id = (await post_report(client, volunteer, action_factory().id)).json()["id"]
        response = await client.get(f"/api/reports/{report_id}", headers=auth_headers(outsider))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_stats_summary(self, client, volunteer, action_factory, distribution_types):
        meal = distribution_types[0]
        action = action_factory()
        await post_report(client, volunteer, action.id, beneficiariesCount=10,
                          distributions=[{"distributionTypeId": str(meal.id), "quantity": 10}], alerts=[alert()])
        await post_report(client, volunteer, action.id, reportDate="2025-09-10", beneficiariesCount=5,
                          distributions=[{"distributionTypeId": str(meal.id), "quantity": 4}])

        stats = (await client.get("/api/reports/stats/summary", headers=auth_headers(volunteer))).json()["stats"]
        assert stats["totalReports"] == 2
        assert stats["totalBeneficiaries"] == 15
        assert stats["averageBeneficiariesPerMaraude"] == 8
        assert stats["distributions"]["meal"] == {"total": 14, "items": {"Repas chaud": 14}}
        assert stats["alertsCount"]["critical"] == 1


class TestDistributionTypes:
    @pytest.mark.asyncio
    async def test_catalogue(self, client, distribution_types):
        data = (await client.get("/api/reports/distribution-types")).json()
        assert len(data["types"]) == 3
        assert [t["name"] for t in data["grouped"]["meal"]] == ["Repas chaud"]
        assert data["categories"]["hygiene"] == "Hygiène"

    @pytest.mark.asyncio
    async def test_admin_manages_catalogue(self, client, admin, coordinator):
        payload = {"name": "Thermos", "category": "meal", "color": "#123abc"}
        response = await client.post("/api/reports/distribution-types", json=payload, headers=auth_headers(coordinator))
        assert response.status_code == 403

        response = await client.post("/api/reports/distribution-types", json=payload, headers=auth_headers(admin))
        assert response.status_code == 201
        type_id = response.json()["id"]

        response = await client.post("/api/reports/distribution-types", json=payload, headers=auth_headers(admin))
        assert response.status_code == 409

        response = await client.put(
            f"/api/reports/distribution-types/{type_id}", json={"isActive": False}, headers=auth_headers(admin)
        )
        assert response.json()["isActive"] is False
        assert (await client.get("/api/reports/distribution-types")).json()["types"] == []

    @pytest.mark.asyncio
    async def test_bad_color(self, client, admin):
        payload = {"name": "Thermos", "category": "meal", "color": "blue"}
        response = await client.post("/api/reports/distribution-types", json=payload, headers=auth_headers(admin))
        assert response.status_code == 400


class TestEmail:
    @pytest.mark.asyncio
    async def test_sent(self, client, db, volunteer, action_factory, monkeypatch):
        calls = []

        async def fake_send(**kwargs):
            calls.append(kwargs)
            return True

        monkeypatch.setattr(email_service, "send_report_email", fake_send)
        report_id = (await post_report(client, volunteer, action_factory().id)).json()["id"]

        response = await client.post(
            f"/api/reports/{report_id}/send-email",
            json={"recipients": ["mairie@paris.fr"], "message": "Bonne lecture"},
            headers=auth_headers(volunteer),
        )
        assert response.status_code == 200
        assert response.json()["recipients"] == ["mairie@paris.fr"]
        assert calls[0]["subject"] == "Compte-rendu de maraude - Maraude du soir"
        assert calls[0]["sender_email"] == volunteer.email

        report = (await client.get(f"/api/reports/{report_id}", headers=auth_headers(volunteer))).json()
        assert report["emailSent"] is True
        assert report["emailRecipients"] == ["mairie@paris.fr"]

    @pytest.mark.asyncio
    async def test_failure_leaves_report_untouched(self, client, volunteer, action_factory, monkeypatch):
        async def fake_send(**kwargs):
            return False

        monkeypatch.setattr(email_service, "send_report_email", fake_send)
        report_id = (await post_report(client, volunteer, action_factory().id)).json()["id"]

        response = await client.post(
            f"/api/reports/{report_id}/send-email", json={"recipients": ["mairie@paris.fr"]},
            headers=auth_headers(volunteer),
        )
        assert response.status_code == 500
        assert response.json()["error"] == "Failed to send email"

        report = (await client.get(f"/api/reports/{report_id}", headers=auth_headers(volunteer))).json()
        assert report["emailSent"] is False

    @pytest.mark.asyncio
    async def test_recipients_required(self, client, volunteer, action_factory):
        report_id = (await post_report(client, volunteer, action_factory().id)).json()["id"]
        response = await client.post(
            f"/api/reports/{report_id}/send-email", json={"recipients": []}, headers=auth_headers(volunteer)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Recipients required"


class TestEmailService:
    @pytest.fixture
    def report(self, db, volunteer, action_factory, distribution_types):
        action = action_factory(title="Maraude <Nord>")
        report = MaraudeReport(
            maraude_action_id=action.id, report_date=date(2025, 9, 17),
            start_time=action.start_time, end_time=action.start_time,
            beneficiaries_count=3, volunteers_count=2, created_by=volunteer.id,
            status=ReportStatus.DRAFT, general_notes="Froid & pluie",
        )
        db.add(report)
        db.commit()
        db.refresh(report)
        return report

    def test_html_is_escaped(self, report):
        html = email_service.render_report_html(report, "Merci <3", "Inès", "ines@nuits.org")
        assert "Maraude &lt;Nord&gt;" in html
        assert "Froid &amp; pluie" in html
        assert "Merci &lt;3" in html

    @pytest.mark.asyncio
    async def test_no_api_key(self, report, monkeypatch):
        monkeypatch.setattr(settings, "EMAIL_API_KEY", None)
        assert await email_service.send_report_email(report, ["a@b.org"], "Objet", None, "Inès", "ines@nuits.org") is False

    @pytest.mark.asyncio
    async def test_delivery(self, report, monkeypatch):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"id": "email-1"})

        real_client = httpx.AsyncClient
        monkeypatch.setattr(settings, "EMAIL_API_KEY", "re_test")
        monkeypatch.setattr(
            email_service.httpx, "AsyncClient",
            lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
        )

        sent = await email_service.send_report_email(report, ["a@b.org"], "Objet", None, "Inès", "ines@nuits.org")
        assert sent is True
        assert requests[0].headers["Authorization"] == "Bearer re_test"

    @pytest.mark.asyncio
    async def test_api_error(self, report, monkeypatch):
        real_client = httpx.AsyncClient
        monkeypatch.setattr(settings, "EMAIL_API_KEY", "re_test")
        monkeypatch.setattr(
            email_service.httpx, "AsyncClient",
            lambda **kwargs: real_client(transport=httpx.MockTransport(lambda r: httpx.Response(422)), **kwargs),
        )
        assert await email_service.send_report_email(report, ["a@b.org"], "Objet", None, "Inès", "ines@nuits.org") is False


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "connected"}
