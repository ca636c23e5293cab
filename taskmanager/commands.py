import click
from flask.cli import with_appcontext
from . import db
from .models import Rule, get_brasilia_now

DEMO_TENANT = 'demo'

DEFAULT_RULES = {
    'Financeiro': ['Mensal', 'Trimestral', 'Anual'],
    'Contábil': ['Mensal', 'Anual'],
    'Fiscal': ['Mensal', 'Trimestral'],
    'Departamento Pessoal': ['Mensal', 'Quinzenal', 'Anual'],
}


@click.command('seed-db')
@click.option('--tenant', default=DEMO_TENANT, show_default=True, help='Tenant que recebe as regras padrão.')
@with_appcontext
def seed_db_command(tenant):
    """Cria as tabelas (se preciso) e as regras de recorrência padrão do tenant."""
    db.create_all()

    created = 0
    for area, recorrencias in DEFAULT_RULES.items():
        if Rule.query.filter_by(tenant_id=tenant, area=area).first():
            click.echo(f"Regra de '{area}' já existe. Mantida.")
            continue
        rule = Rule(tenant_id=tenant, area=area, updated_by='seed', updated_at=get_brasilia_now())
        rule.set_allowed_recorrencias(recorrencias)
        db.session.add(rule)
        created += 1

    db.session.commit()
    click.echo(f"{created} regra(s) criada(s) para o tenant '{tenant}'.")


@click.command('list-rules')
@click.option('--tenant', required=True, help='Tenant a consultar.')
@with_appcontext
def list_rules_command(tenant):
    """Lista as regras de recorrência de um tenant."""
    rules = Rule.query.filter_by(tenant_id=tenant).order_by(Rule.area.asc()).all()
    if not rules:
        click.echo(f"Nenhuma regra para o tenant '{tenant}'.")
        return
    for rule in rules:
        allowed = ', '.join(rule.get_allowed_recorrencias()) or '(nenhuma)'
        click.echo(f"{rule.area}: {allowed}  [atualizada por {rule.updated_by} em {rule.updated_at:%d/%m/%Y %H:%M}]")


def register_commands(app):
    app.cli.add_command(seed_db_command)
    app.cli.add_command(list_rules_command)
