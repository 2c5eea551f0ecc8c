from datetime import date

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app import auth, dependencies, models, reports, serializers, util
from app.db import get_db

router = APIRouter()


def get_filters(
    application_type: models.ApplicationType | None = None,
    zone: str | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
) -> reports.ReportFilters:
    """Parse the report filters from the query string. Dates are compared to the submission date, inclusively."""
    return reports.ReportFilters(application_type=application_type, zone=zone, date_from=date_from, date_to=date_to)


@router.get(
    "/admin/reports/cost-pressure",
    tags=[util.Tags.reports],
)
async def get_cost_pressure_report(
    filters: reports.ReportFilters = Depends(get_filters),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> serializers.CostPressureReport:
    """
    Compare the funding requested to the budget allocated, by fiscal year, zone and application type.
    """
    return reports.cost_pressure(session, filters)


@router.get(
    "/admin/reports/cost-pressure/csv",
    tags=[util.Tags.reports],
)
async def export_cost_pressure_report(
    filters: reports.ReportFilters = Depends(get_filters),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> Response:
    header, rows = reports.cost_pressure_rows(reports.cost_pressure(session, filters))
    return util.csv_response("cost-pressure-report.csv", header, rows)


@router.get(
    "/admin/reports/regional",
    tags=[util.Tags.reports],
)
async def get_regional_report(
    filters: reports.ReportFilters = Depends(get_filters),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> serializers.RegionalReport:
    """
    Return the funding distribution by zone, with approval rates.
    """
    return reports.regional(session, filters)


@router.get(
    "/admin/reports/regional/csv",
    tags=[util.Tags.reports],
)
async def export_regional_report(
    filters: reports.ReportFilters = Depends(get_filters),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> Response:
    header, rows = reports.regional_rows(reports.regional(session, filters))
    return util.csv_response("regional-report.csv", header, rows)


@router.get(
    "/admin/reports/fiscal-year",
    tags=[util.Tags.reports],
)
async def get_fiscal_year_report(
    filters: reports.ReportFilters = Depends(get_filters),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> serializers.FiscalYearReport:
    """
    Return the funding requested and approved by fiscal year, with approval rates.
    """
    return reports.fiscal_year(session, filters)


@router.get(
    "/admin/reports/fiscal-year/csv",
    tags=[util.Tags.reports],
)
async def export_fiscal_year_report(
    filters: reports.ReportFilters = Depends(get_filters),
    reviewer: auth.Principal = Depends(dependencies.get_reviewer),
    session: Session = Depends(get_db),
) -> Response:
    header, rows = reports.fiscal_year_rows(reports.fiscal_year(session, filters))
    return util.csv_response("fiscal-year-report.csv", header, rows)
