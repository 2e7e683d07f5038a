# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/orderledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo product with three variants and an opening RESTOCK entry each.
#
# Ledger inspection:
# - python -m flask ledger verify [--variant-id 7]
#   Reconcile stock counters with their ledger entries; exits 1 on drift.
# - python -m flask ledger history 7 --limit 20
#   Print the most recent ledger entries of a variant.
#
# Authorization inspection:
# - python -m flask perms list [--role SALES_STAFF] [--category INVENTORY]
#   Show operations, optionally only those granted to a role or in a category.
# - python -m flask perms check INVENTORY_MANAGER inventory.adjust
#   Report whether a role is granted an operation.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, ProductVariant
from .permissions import (
    OPERATION_DEFINITIONS,
    get_all_operation_codes,
    get_operation_definition,
    get_operations_by_category,
    get_role_operations,
)
from .permissions.definitions import OWNER_SCOPED_OPERATIONS, ROLE_ADMIN, ROLE_CUSTOMER, VALID_ROLES
from .permissions.policy import Actor
from .services import inventory_ledger
from .time_utils import to_utc_z


# Ledger entries written from the command line are attributed to this user id
CLI_ACTOR = Actor(user_id=1, role=ROLE_ADMIN)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


DEMO_VARIANTS = (
    ("DEMO-TSHIRT-S-BLK", "S", "Black", 0, 12),
    ("DEMO-TSHIRT-M-BLK", "M", "Black", 0, 20),
    ("DEMO-TSHIRT-XL-WHT", "XL", "White", 200, 5),
)


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Idempotent: create a demo product, its variants and opening stock."""
    product = Product.query.filter_by(slug="demo-tshirt").first()
    if product is None:
        product = Product(name="Demo T-Shirt", slug="demo-tshirt", base_price_cents=2500)
        db.session.add(product)
        db.session.commit()
        click.echo(f"CREATE Product {product.slug} (id={product.id})")
    else:
        click.echo(f"SKIP  Product {product.slug} already exists (id={product.id})")

    for sku, size, color, extra_cents, opening_stock in DEMO_VARIANTS:
        variant = ProductVariant.query.filter_by(sku=sku).first()
        if variant is not None:
            click.echo(f"SKIP  Variant {sku} already exists (stock={variant.stock_quantity})")
            continue

        variant = ProductVariant(
            product_id=product.id,
            sku=sku,
            size=size,
            color=color,
            additional_price_cents=extra_cents,
            stock_quantity=0,
        )
        db.session.add(variant)
        db.session.commit()

        # Opening stock goes through the ledger like any other change
        inventory_ledger.record_adjustment(
            variant.id, inventory_ledger.CHANGE_RESTOCK, opening_stock, "Opening stock (demo seed)", CLI_ACTOR,
        )
        click.echo(f"CREATE Variant {sku} with opening stock {opening_stock}")

    click.echo("PASS Demo data ready.")


@click.group('ledger')
def ledger_group():
    """Inventory ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--variant-id', type=int, default=None, help='Check a single variant')
@with_appcontext
def verify_ledger(variant_id):
    """Reconcile stock counters with their ledger entries."""
    if variant_id is not None:
        reports = [inventory_ledger.verify_variant(variant_id, actor=CLI_ACTOR)]
        failing = [r for r in reports if not r["ok"]]
    else:
        failing = inventory_ledger.verify_all()

    if not failing:
        click.echo("PASS All checked variants reconcile with their ledger.")
        return

    for report in failing:
        click.echo(
            f"FAIL variant={report['variant_id']} stock={report['stock_quantity']} "
            f"latest_entry={report['latest_entry_quantity']} "
            f"unbalanced={report['unbalanced_entry_ids']} "
            f"broken_chain={report['broken_chain_entry_ids']}"
        )
    raise SystemExit(1)


@ledger_group.command('history')
@click.argument('variant_id', type=int)
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def ledger_history(variant_id, limit):
    """Print the most recent ledger entries of a variant."""
    page = inventory_ledger.history(variant_id, {"limit": limit}, actor=CLI_ACTOR)
    variant = page["variant"]
    click.echo(f"Variant {variant.id} ({variant.sku}) stock={variant.stock_quantity}")

    if not page["items"]:
        click.echo("(no ledger entries)")
        return

    for entry in page["items"]:
        click.echo(
            f"{to_utc_z(entry.created_at)}  #{entry.id:<6} {entry.change_type:<10} "
            f"{entry.quantity_change:+5d}  {entry.previous_quantity:>5} -> {entry.new_quantity:<5} "
            f"by={entry.performed_by} order={entry.order_id or '-'}  {entry.reason or ''}"
        )
    if page["next_cursor"]:
        click.echo(f"... more entries (cursor {page['next_cursor']})")


@click.group('perms')
def perms_group():
    """Authorization inspection commands."""


@perms_group.command('list')
@click.option('--role', help='Filter by role name')
@click.option('--category', help='Filter by category')
def list_permissions_cli(role, category):
    """List all operations, optionally filtered by role or category."""
    if role:
        role = role.upper()
        if role not in VALID_ROLES:
            click.echo(f"FAIL Role '{role}' not found")
            raise SystemExit(1)

        codes = get_role_operations(role)

        click.echo(f"\n{'='*80}")
        click.echo(f"Operations for role: {role}")
        click.echo(f"{'='*80}\n")

        click.echo(f"{'Code':<30} {'Name':<35} {'Category'}")
        click.echo("-"*80)

        for code in codes:
            op = get_operation_definition(code)
            name = op["name"]
            if role == ROLE_CUSTOMER and code in OWNER_SCOPED_OPERATIONS:
                name += " (own orders)"
            click.echo(f"{code:<30} {name:<35} {op['category']}")

        click.echo(f"\n Total: {len(codes)} operations\n")

    elif category:
        category = category.upper()
        ops = get_operations_by_category(category)
        if not ops:
            click.echo(f"FAIL Category '{category}' not found")
            raise SystemExit(1)

        click.echo(f"\n{'='*80}")
        click.echo(f"Operations in category: {category}")
        click.echo(f"{'='*80}\n")

        click.echo(f"{'Code':<30} {'Name'}")
        click.echo("-"*80)

        for code, name, _description, _category in ops:
            click.echo(f"{code:<30} {name}")

        click.echo(f"\n Total: {len(ops)} operations\n")

    else:
        click.echo(f"\n{'='*80}")
        click.echo("All Operations")
        click.echo(f"{'='*80}\n")

        current_category = None
        for code, name, _description, op_category in sorted(OPERATION_DEFINITIONS, key=lambda op: (op[3], op[0])):
            if op_category != current_category:
                if current_category:
                    click.echo("")
                click.echo(f"CATEGORY {op_category}")
                click.echo("-"*80)
                current_category = op_category

            click.echo(f"  {code:<28} {name}")

        click.echo(f"\n Total: {len(OPERATION_DEFINITIONS)} operations\n")


@perms_group.command('check')
@click.argument('role')
@click.argument('operation')
def check_permission_cli(role, operation):
    """Check whether a role is granted an operation."""
    role = role.upper()
    if role not in VALID_ROLES:
        click.echo(f"FAIL Role '{role}' not found")
        raise SystemExit(1)
    if operation not in get_all_operation_codes():
        click.echo(f"FAIL Operation '{operation}' not found")
        raise SystemExit(1)

    if operation in get_role_operations(role):
        scope = " (own orders only)" if role == ROLE_CUSTOMER and operation in OWNER_SCOPED_OPERATIONS else ""
        click.echo(f"PASS Role '{role}' HAS operation '{operation}'{scope}")
    else:
        click.echo(f"FAIL Role '{role}' DOES NOT HAVE operation '{operation}'")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(perms_group)
