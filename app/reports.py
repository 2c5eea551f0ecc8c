"""
Aggregations for the reviewer dashboard and reports.

Draft applications are excluded from every aggregation.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import case, func
from sqlalchemy.orm import Query, Session
from sqlmodel import col

from app import serializers
from app.models import (
    Application,
    ApplicationStatus,
    ApplicationType,
    BudgetAllocation,
    Organization,
    StatusHistory,
    Zone,
)

UNKNOWN_ZONE = "Unknown"
UNKNOWN_FISCAL_YEAR = "N/A"
DECISIONS = (ApplicationStatus.APPROVED, ApplicationStatus.DECLINED)


@dataclass
class ReportFilters:
    application_type: ApplicationType | None = None
    #: An organization's zone code.
    zone: str | None = None
    #: Inclusive, on the submission date.
    date_from: date | None = None
    #: Inclusive, on the submission date.
    date_to: date | None = None


def _decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _rate(numerator: int, denominator: int) -> int:
    if not denominator:
        return 0
    return int((Decimal(numerator) * 100 / denominator).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _average(total: Decimal, count: int) -> Decimal:
    if not count:
        return Decimal(0)
    return (total / count).quantize(Decimal(1), rounding=ROUND_HALF_UP)


def _count_status(status: ApplicationStatus) -> Any:
    return func.coalesce(func.sum(case((Application.status == status, 1), else_=0)), 0)


def _sum_requested(status: ApplicationStatus | None = None) -> Any:
    if status is None:
        return func.coalesce(func.sum(Application.total_funding_requested), 0)
    return func.coalesce(
        func.sum(case((Application.status == status, Application.total_funding_requested), else_=0)), 0
    )


def _base_query(session: Session, *columns: Any, filters: ReportFilters | None = None) -> Query[Any]:
    """
    Return a query of non-Draft applications joined to their organizations, filtered by ``filters``.
    """
    query = (
        session.query(*columns)
        .select_from(Application)
        .join(Organization, Application.organization_id == Organization.id)
        .filter(Application.status != ApplicationStatus.DRAFT)
    )

    if filters is None:
        return query

    if filters.application_type:
        query = query.filter(Application.application_type == filters.application_type)
    if filters.zone:
        query = query.filter(Organization.zone_code == filters.zone)
    if filters.date_from:
        query = query.filter(col(Application.submitted_at) >= datetime.combine(filters.date_from, time.min))
    if filters.date_to:
        query = query.filter(
            col(Application.submitted_at) < datetime.combine(filters.date_to + timedelta(days=1), time.min)
        )

    return query


def _by_zone(session: Session, filters: ReportFilters | None, *extra: Any) -> Query[Any]:
    return (
        _base_query(
            session,
            Organization.zone_code,
            Zone.name,
            func.count(Application.id),
            _sum_requested(),
            *extra,
            filters=filters,
        )
        .outerjoin(Zone, Zone.code == Organization.zone_code)
        .group_by(Organization.zone_code, Zone.name)
        .order_by(Zone.name)
    )


def _by_fiscal_year(session: Session, filters: ReportFilters | None, *extra: Any) -> Query[Any]:
    return (
        _base_query(
            session,
            Application.fiscal_year_code,
            func.count(Application.id),
            _sum_requested(),
            *extra,
            filters=filters,
        )
        .group_by(Application.fiscal_year_code)
        .order_by(Application.fiscal_year_code)
    )


def _zone_totals(session: Session, filters: ReportFilters | None) -> list[serializers.ZoneTotal]:
    return [
        serializers.ZoneTotal(
            zone_code=zone_code or UNKNOWN_ZONE,
            zone_name=zone_name or UNKNOWN_ZONE,
            count=count,
            total_requested=_decimal(total),
        )
        for zone_code, zone_name, count, total in _by_zone(session, filters)
    ]


def _fiscal_year_totals(session: Session, filters: ReportFilters | None) -> list[serializers.FiscalYearTotal]:
    return [
        serializers.FiscalYearTotal(
            fiscal_year_code=fiscal_year_code or UNKNOWN_FISCAL_YEAR,
            count=count,
            total_requested=_decimal(total),
        )
        for fiscal_year_code, count, total in _by_fiscal_year(session, filters)
    ]


def average_processing_days(session: Session, filters: ReportFilters | None = None) -> float | None:
    """
    Return the average number of days from submission to a decision, rounded to one decimal place.

    :return: None if no application is decided.
    """
    rows = (
        _base_query(session, Application.submitted_at, StatusHistory.changed_at, filters=filters)
        .join(StatusHistory, StatusHistory.application_id == Application.id)
        .filter(col(StatusHistory.to_status).in_(DECISIONS), col(Application.submitted_at).isnot(None))
        .all()
    )
    if not rows:
        return None

    total_seconds = sum((changed_at - submitted_at).total_seconds() for submitted_at, changed_at in rows)
    return round(total_seconds / len(rows) / 86400, 1)


def dashboard(session: Session) -> serializers.DashboardResponse:
    total, requested, approved, declined, approved_funding = _base_query(
        session,
        func.count(Application.id),
        _sum_requested(),
        _count_status(ApplicationStatus.APPROVED),
        _count_status(ApplicationStatus.DECLINED),
        _sum_requested(ApplicationStatus.APPROVED),
    ).one()
    requested = _decimal(requested)

    status_distribution = [
        serializers.StatusCount(status=status, count=count)
        for status, count in _base_query(session, Application.status, func.count(Application.id))
        .group_by(Application.status)
        .order_by(Application.status)
    ]

    return serializers.DashboardResponse(
        summary=serializers.DashboardSummary(
            total_applications=total,
            total_funding_requested=requested,
            average_request_amount=_average(requested, total),
        ),
        status_distribution=status_distribution,
        regional_distribution=_zone_totals(session, None),
        fiscal_year_trends=_fiscal_year_totals(session, None),
        kpis=serializers.Kpis(
            avg_processing_days=average_processing_days(session),
            approval_rate=_rate(approved, approved + declined),
            total_approved_funding=_decimal(approved_funding),
        ),
    )


def cost_pressure(session: Session, filters: ReportFilters) -> serializers.CostPressureReport:
    """
    Compare the amounts requested to the amounts allocated, by fiscal year, zone and application type.
    """
    by_type = [
        serializers.TypeTotal(application_type=application_type, count=count, total_requested=_decimal(total))
        for application_type, count, total in _base_query(
            session,
            Application.application_type,
            func.count(Application.id),
            _sum_requested(),
            filters=filters,
        )
        .group_by(Application.application_type)
        .order_by(Application.application_type)
    ]

    allocations = {
        (allocation.fiscal_year_code, allocation.zone_code, allocation.application_type): allocation.allocated_amount
        for allocation in session.query(BudgetAllocation)
    }

    rows = []
    for fiscal_year_code, zone_code, application_type, total in (
        _base_query(
            session,
            Application.fiscal_year_code,
            Organization.zone_code,
            Application.application_type,
            _sum_requested(),
            filters=filters,
        )
        .filter(col(Application.fiscal_year_code).isnot(None))
        .group_by(Application.fiscal_year_code, Organization.zone_code, Application.application_type)
        .order_by(Application.fiscal_year_code, Organization.zone_code, Application.application_type)
    ):
        total = _decimal(total)
        allocated = _decimal(allocations.get((fiscal_year_code, zone_code, application_type)))
        rows.append(
            serializers.CostPressureRow(
                fiscal_year_code=fiscal_year_code,
                zone_code=zone_code or UNKNOWN_ZONE,
                application_type=application_type,
                total_requested=total,
                allocated_amount=allocated,
                pressure=total - allocated,
            )
        )

    return serializers.CostPressureReport(
        total_applications=sum(row.count for row in by_type),
        total_funding_requested=sum((row.total_requested for row in by_type), Decimal(0)),
        by_type=by_type,
        by_zone=_zone_totals(session, filters),
        by_fiscal_year=_fiscal_year_totals(session, filters),
        cost_pressure=rows,
    )


def regional(session: Session, filters: ReportFilters) -> serializers.RegionalReport:
    zones = []
    for zone_code, zone_name, count, total, approved, declined in _by_zone(
        session,
        filters,
        _count_status(ApplicationStatus.APPROVED),
        _count_status(ApplicationStatus.DECLINED),
    ):
        total = _decimal(total)
        zones.append(
            serializers.RegionalRow(
                zone_code=zone_code or UNKNOWN_ZONE,
                zone_name=zone_name or UNKNOWN_ZONE,
                count=count,
                total_requested=total,
                approved_count=approved,
                declined_count=declined,
                approval_rate=_rate(approved, approved + declined),
                avg_request_amount=_average(total, count),
            )
        )

    return serializers.RegionalReport(
        total_applications=sum(row.count for row in zones),
        total_funding_requested=sum((row.total_requested for row in zones), Decimal(0)),
        zones=zones,
    )


def fiscal_year(session: Session, filters: ReportFilters) -> serializers.FiscalYearReport:
    fiscal_years = []
    for fiscal_year_code, count, total, approved, declined, approved_funding in _by_fiscal_year(
        session,
        filters,
        _count_status(ApplicationStatus.APPROVED),
        _count_status(ApplicationStatus.DECLINED),
        _sum_requested(ApplicationStatus.APPROVED),
    ):
        fiscal_years.append(
            serializers.FiscalYearRow(
                fiscal_year_code=fiscal_year_code or UNKNOWN_FISCAL_YEAR,
                count=count,
                total_requested=_decimal(total),
                approved_count=approved,
                declined_count=declined,
                approval_rate=_rate(approved, approved + declined),
                total_approved_funding=_decimal(approved_funding),
            )
        )

    return serializers.FiscalYearReport(
        total_applications=sum(row.count for row in fiscal_years),
        total_funding_requested=sum((row.total_requested for row in fiscal_years), Decimal(0)),
        fiscal_years=fiscal_years,
    )


# CSV exports


def cost_pressure_rows(report: serializers.CostPressureReport) -> tuple[list[str], list[list[Any]]]:
    header = ["Fiscal Year", "Zone", "Application Type", "Total Requested", "Allocated", "Pressure"]
    rows = [
        [
            row.fiscal_year_code,
            row.zone_code,
            row.application_type or "",
            row.total_requested,
            row.allocated_amount,
            row.pressure,
        ]
        for row in report.cost_pressure
    ]
    return header, rows


def regional_rows(report: serializers.RegionalReport) -> tuple[list[str], list[list[Any]]]:
    header = ["Zone", "Count", "Total Requested", "Approved", "Declined", "Approval Rate (%)", "Avg Request Amount"]
    rows = [
        [
            row.zone_name,
            row.count,
            row.total_requested,
            row.approved_count,
            row.declined_count,
            row.approval_rate,
            row.avg_request_amount,
        ]
        for row in report.zones
    ]
    return header, rows


def fiscal_year_rows(report: serializers.FiscalYearReport) -> tuple[list[str], list[list[Any]]]:
    header = [
        "Fiscal Year",
        "Count",
        "Total Requested",
        "Approved",
        "Declined",
        "Approval Rate (%)",
        "Approved Funding",
    ]
    rows = [
        [
            row.fiscal_year_code,
            row.count,
            row.total_requested,
            row.approved_count,
            row.declined_count,
            row.approval_rate,
            row.total_approved_funding,
        ]
        for row in report.fiscal_years
    ]
    return header, rows
