"""CLI tools for Maraude Tracker administration."""

import click

from maraude_tracker.auth.utils import hash_password
from maraude_tracker.database import Base, SessionLocal, engine
from maraude_tracker.errors import ConflictError
from maraude_tracker.models.db_models import DistributionCategory, UserRole
from maraude_tracker.repositories import (
    AssociationRepository, DistributionTypeRepository, MaraudeActionRepository, UserRepository
)
from maraude_tracker.services import schedule

DEFAULT_DISTRIBUTION_TYPES = [
    ("Repas chaud", DistributionCategory.MEAL, "utensils", "#F97316"),
    ("Sandwich", DistributionCategory.MEAL, "sandwich", "#FB923C"),
    ("Boisson chaude", DistributionCategory.MEAL, "coffee", "#A16207"),
    ("Eau", DistributionCategory.MEAL, "droplet", "#0EA5E9"),
    ("Kit d'hygiène", DistributionCategory.HYGIENE, "soap", "#14B8A6"),
    ("Protections périodiques", DistributionCategory.HYGIENE, "heart", "#EC4899"),
    ("Couverture", DistributionCategory.CLOTHING, "blanket", "#6366F1"),
    ("Vêtements chauds", DistributionCategory.CLOTHING, "shirt", "#8B5CF6"),
    ("Chaussettes", DistributionCategory.CLOTHING, "socks", "#A855F7"),
    ("Premiers soins", DistributionCategory.MEDICAL, "first-aid", "#EF4444"),
    ("Orientation", DistributionCategory.OTHER, "compass", "#64748B"),
]


@click.group()
def cli():
    """Maraude Tracker CLI tools."""
    pass


@cli.command("init-db")
@click.option("--drop", is_flag=True, help="Drop existing tables first")
def init_db(drop: bool):
    """Create the database tables."""
    if drop:
        Base.metadata.drop_all(bind=engine)
        click.echo("✓ Dropped existing tables")
    Base.metadata.create_all(bind=engine)
    click.echo("✓ Tables created")


@cli.command("seed-distribution-types")
def seed_distribution_types():
    """Insert the default distribution catalogue (skips existing names)."""
    db = SessionLocal()
    try:
        repo = DistributionTypeRepository(db)
        created = 0
        for name, category, icon, color in DEFAULT_DISTRIBUTION_TYPES:
            if repo.by_name(name):
                continue
            repo.create(name=name, category=category, icon=icon, color=color, is_active=True)
            created += 1
        repo.commit()
        click.echo(f"✓ {created} distribution type(s) created, {len(DEFAULT_DISTRIBUTION_TYPES) - created} already present")
    finally:
        db.close()


@cli.command("create-admin")
@click.option("--email", required=True, help="Admin email address")
@click.option("--password", required=True, prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--first-name", required=True)
@click.option("--last-name", required=True)
@click.option("--association-name", default="Administration", show_default=True,
              help="Association the admin belongs to (created active when missing)")
@click.option("--association-email", default=None, help="Contact email of a new association")
def create_admin(email: str, password: str, first_name: str, last_name: str,
                 association_name: str, association_email: str):
    """
    Create an admin account.

    Example:
        maraude-tracker create-admin --email admin@asso.org --first-name Ada --last-name Admin
    """
    if len(password) < 6:
        raise click.BadParameter("must be at least 6 characters", param_hint="--password")

    db = SessionLocal()
    try:
        users = UserRepository(db)
        if users.by_email(email):
            click.echo(f"❌ A user with email {email} already exists")
            raise SystemExit(1)

        associations = AssociationRepository(db)
        association = associations.find_one(name=association_name)
        if association is None:
            association = associations.create(
                name=association_name,
                email=(association_email or email).lower(),
                is_active=True,
            )
            associations.flush()
            click.echo(f"✓ Created association: {association_name}")
        elif not association.is_active:
            association.is_active = True

        admin = users.create(
            first_name=first_name,
            last_name=last_name,
            email=email.lower(),
            hashed_password=hash_password(password),
            role=UserRole.ADMIN,
            association_id=association.id,
        )
        users.commit()
        click.echo(f"✓ Created admin {email}")
        click.echo(f"  ID: {admin.id}")
    except ConflictError as e:
        click.echo(f"❌ {e.error}")
        raise SystemExit(1)
    finally:
        db.close()


@cli.command("activate-association")
@click.option("--email", required=True, help="Contact email of the association")
@click.option("--deactivate", is_flag=True, help="Deactivate instead")
def activate_association(email: str, deactivate: bool):
    """Approve (or suspend) a registered association."""
    db = SessionLocal()
    try:
        repo = AssociationRepository(db)
        association = repo.by_email(email)
        if association is None:
            click.echo(f"❌ No association with email {email}")
            raise SystemExit(1)
        repo.update(association, {"is_active": not deactivate})
        repo.commit()
        click.echo(f"✓ {association.name} is now {'inactive' if deactivate else 'active'}")
    finally:
        db.close()


@cli.command("weekly-schedule")
def weekly_schedule():
    """Print the recurring weekly plan."""
    db = SessionLocal()
    try:
        actions = MaraudeActionRepository(db).recurring_active()
        for day in schedule.DAYS:
            todays = [a for a in actions if a.day_of_week == day["value"]]
            click.echo(f"{day['name']}:")
            if not todays:
                click.echo("  -")
            for action in todays:
                end = f"-{action.end_time.strftime('%H:%M')}" if action.end_time else ""
                click.echo(f"  {action.start_time.strftime('%H:%M')}{end}  {action.title}  ({action.association.name})")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
