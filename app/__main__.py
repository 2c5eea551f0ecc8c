import csv
import inspect
import itertools
import sys
import types
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

import click
import typer.cli
from fastapi.params import Depends, Header
from rich.console import Console
from rich.table import Table
from sqlmodel import SQLModel

from app import main, models, workflow
from app.db import engine, get_db, rollback_on_error

if TYPE_CHECKING:
    from fastapi.routing import APIRoute
    from starlette.routing import Route

state = {"quiet": False}

ZONES = [
    ("NORTH", "North Zone"),
    ("EDMONTON", "Edmonton Zone"),
    ("CENTRAL", "Central Zone"),
    ("CALGARY", "Calgary Zone"),
    ("SOUTH", "South Zone"),
]

SERVICE_TYPES = [
    ("EMERGENCY", "Emergency Shelter"),
    ("SECOND_STAGE", "Second-Stage Shelter"),
    ("OUTREACH", "Outreach Services"),
]

DOCUMENT_TYPES = [
    ("FINANCIAL_STATEMENT", "Audited Financial Statement"),
    ("BUDGET", "Detailed Budget"),
    ("SOCIETY_REGISTRATION", "Society Registration Certificate"),
    ("BOARD_LIST", "Board of Directors List"),
    ("LETTER_OF_SUPPORT", "Letter of Support"),
    ("OTHER", "Other Supporting Document"),
]

FAQS = [
    (
        "Who can apply?",
        "Non-profit societies, registered charities and Indigenous organizations that operate, or propose to operate, "
        "a women's shelter or second-stage shelter.",
        "Eligibility",
    ),
    (
        "What is the difference between Part A and Part B?",
        "Part A renews base operational funding for an existing shelter. Part B requests funding for a new shelter or "
        "for an expansion.",
        "Applications",
    ),
    (
        "Can I edit my application after submitting it?",
        "No. Applications can be edited only while in Draft. If the reviewer needs more information, they will "
        "contact you through the application's messages.",
        "Applications",
    ),
    (
        "Which file types can I upload?",
        "PDF, JPEG, PNG and DOCX files, up to 25 MB each and 100 MB per application.",
        "Documents",
    ),
]


class OrderedGroup(typer.cli.TyperCLIGroup):
    # https://github.com/fastapi/typer/blob/adca3254f8c2adc8d9b71b5cdea65c41770bd9b9/typer/cli.py#L55-L57
    # https://github.com/pallets/click/blob/e16088a8569597c55f108ea89af6245898249ec2/src/click/core.py#L1684-L1686
    def list_commands(self, ctx: click.Context) -> list[str]:
        self.maybe_add_run(ctx)
        return list(self.commands)


console = Console()
app = typer.Typer(cls=OrderedGroup)
dev = typer.Typer()
app.add_typer(dev, name="dev", help="Commands for maintainers of the portal.")


def _echo(message: str) -> None:
    if not state["quiet"]:
        print(message)


@app.command()
def create_tables() -> None:
    """Create any missing database tables."""
    SQLModel.metadata.create_all(engine)
    _echo(f"Created {len(SQLModel.metadata.tables)} tables")


@app.command()
def seed() -> None:
    """
    Create or update the reference data.

    \b
    -  Zones
    -  Service types
    -  Document types
    -  FAQs, matched by question
    """
    with contextmanager(get_db)() as session, rollback_on_error(session):
        for sort_order, (code, name) in enumerate(ZONES, 1):
            models.Zone.create_or_update(
                session, [models.Zone.code == code], code=code, name=name, sort_order=sort_order
            )
        for code, name in SERVICE_TYPES:
            models.ServiceType.create_or_update(session, [models.ServiceType.code == code], code=code, name=name)
        for code, name in DOCUMENT_TYPES:
            models.DocumentType.create_or_update(session, [models.DocumentType.code == code], code=code, name=name)
        for sort_order, (question, answer, category) in enumerate(FAQS, 1):
            models.Faq.create_or_update(
                session,
                [models.Faq.question == question],
                question=question,
                answer=answer,
                category=category,
                sort_order=sort_order,
            )

        session.commit()

    _echo(
        f"Seeded {len(ZONES)} zones, {len(SERVICE_TYPES)} service types, {len(DOCUMENT_TYPES)} document types and "
        f"{len(FAQS)} FAQs"
    )


@app.command()
def add_fiscal_year(code: str, *, current: bool = typer.Option(False, "--current")) -> None:  # noqa: FBT003
    """
    Add a fiscal year, like 2026-27.

    With --current, new applications are assigned to this fiscal year, and no other fiscal year is current.
    """
    with contextmanager(get_db)() as session, rollback_on_error(session):
        if current:
            session.query(models.FiscalYear).filter(models.FiscalYear.code != code).update(
                {"is_current": False}, synchronize_session=False
            )
        models.FiscalYear.create_or_update(session, [models.FiscalYear.code == code], code=code, is_current=current)

        session.commit()

    _echo(f"Added fiscal year {code}{' (current)' if current else ''}")


@app.command()
def set_allocation(
    fiscal_year: str,
    zone: str,
    application_type: models.ApplicationType,
    amount: str,
) -> None:
    """Set the amount budgeted for a fiscal year, zone and application type."""
    try:
        allocated_amount = Decimal(amount)
    except InvalidOperation:
        raise click.BadParameter(f"{amount!r} is not a number.", param_hint="AMOUNT") from None
    if allocated_amount < 0:
        raise click.BadParameter("must be zero or more.", param_hint="AMOUNT")

    with contextmanager(get_db)() as session, rollback_on_error(session):
        if not models.FiscalYear.first_by(session, "code", fiscal_year):
            raise click.BadParameter(f"{fiscal_year!r} does not exist.", param_hint="FISCAL_YEAR")
        if not models.Zone.first_by(session, "code", zone):
            raise click.BadParameter(f"{zone!r} does not exist.", param_hint="ZONE")

        models.BudgetAllocation.create_or_update(
            session,
            [
                models.BudgetAllocation.fiscal_year_code == fiscal_year,
                models.BudgetAllocation.zone_code == zone,
                models.BudgetAllocation.application_type == application_type,
            ],
            fiscal_year_code=fiscal_year,
            zone_code=zone,
            application_type=application_type,
            allocated_amount=allocated_amount,
        )

        session.commit()

    _echo(f"Set allocation for {fiscal_year} {zone} {application_type} to {allocated_amount}")


# The openapi.json file can't be used, because it doesn't track Python modules.
@dev.command()
def routes(*, csv_format: bool = False) -> None:
    """Print a table of routes."""

    def _pretty(model: Any, expected: str) -> str:
        if model is None:
            return ""
        if isinstance(model, types.UnionType):
            return str(model).replace(f"{expected}.", "")

        module, name = model.__module__, model.__name__
        if module == expected:
            return str(name)
        if module == "builtins":
            return str(model).replace("app.", "")
        return f"{module.replace('app.', '')}.{name}"

    rows = []
    for route in main.app.routes:
        if TYPE_CHECKING:
            assert isinstance(route, APIRoute | Route)

        # Skip default OpenAPI routes.
        if route.endpoint.__module__.startswith("fastapi."):
            continue

        if body_field := getattr(route, "body_field", None):  # POST, PATCH
            request = _pretty(body_field.type_, "app.parsers")
        else:  # GET
            spec = inspect.getfullargspec(route.endpoint)
            request = ", ".join(
                arg
                for arg, default in itertools.zip_longest(reversed(spec.args), reversed(spec.defaults or []))
                if not isinstance(default, Depends | Header)
            )

        rows.append(
            {
                "Methods": ", ".join(sorted(route.methods or [])),
                "Path": route.path,
                "Parsers": request,
                "Serializers": _pretty(getattr(route, "response_model", None), "app.serializers"),
            }
        )

    fieldnames = "Methods", "Path", "Parsers", "Serializers"
    if csv_format:
        writer = csv.DictWriter(sys.stdout, fieldnames=fieldnames, lineterminator="\n")
        writer.writeheader()
        writer.writerows(rows)
    else:
        table = Table(*fieldnames)
        for row in rows:
            table.add_row(*row.values())
        console.print(table)


@dev.command()
def transitions() -> None:
    """Print the status transition table."""
    table = Table("From", "To")
    for status in models.ApplicationStatus:
        table.add_row(status, ", ".join(workflow.valid_transitions(status)) or "none (terminal status)")
    console.print(table)


# https://typer.tiangolo.com/tutorial/commands/callback/
@app.callback()
def cli(*, quiet: bool = typer.Option(False, "--quiet", "-q")) -> None:  # noqa: FBT003 # false positive
    state["quiet"] = quiet


if __name__ == "__main__":
    app()
