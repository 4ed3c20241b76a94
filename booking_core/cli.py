"""Flask CLI commands."""

import click
from flask.cli import with_appcontext

from booking_core.extensions import db
from booking_core.models import Organization, Role, User

SEED_PASSWORD = 'password123'

SEED_ORGANIZATIONS = [
    ('Acme Tutoring', 'acme'),
    ('TechStart Learning', 'techstart'),
]


@click.command('seed-data')
@click.option('--password', default=SEED_PASSWORD, show_default=True, help='Password for every seeded user.')
@with_appcontext
def seed_data(password):
    """Create tables and seed two organizations with one user per role."""
    db.create_all()

    for name, subdomain in SEED_ORGANIZATIONS:
        org = Organization.find_by_subdomain(subdomain)
        if org is None:
            org = Organization(name=name, subdomain=subdomain, email=f'hello@{subdomain}.example.com')
            db.session.add(org)
            db.session.flush()
        click.echo(f'Organization: {org.name} (ID: {org.id}, subdomain: {org.subdomain})')

        for role in Role:
            email = f'{role.value}@{subdomain}.example.com'
            user = User.find_in_organization(org.id, email)
            if user is None:
                user = User(
                    organization_id=org.id,
                    email=email,
                    first_name=role.value.title(),
                    last_name=name.split()[0],
                    role=role
                )
                user.set_password(password)
                db.session.add(user)
            click.echo(f'  {role.value:<13} {email}')

    db.session.commit()
    click.echo(f'Seed data created successfully! Password for every user: {password}')


def init_app(app):
    """Register CLI commands"""
    app.cli.add_command(seed_data)
