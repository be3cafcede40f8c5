import logging
import math
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.database import utcnow
from sewer_monitor.dependencies import get_db, get_current_user, get_lifecycle, require_role
from sewer_monitor.models import Alert, NotificationLog, Sensor, User
from sewer_monitor.models.alert import ALERT_SEVERITIES, ALERT_STATUSES
from sewer_monitor.schemas.alert import (
    AlertItem,
    AlertListResponse,
    AlertCreateRequest,
    AlertResolveRequest,
    AlertTransitionResponse,
    AlertStatsSummary,
    AlertTypeCount,
    AlertStatsResponse,
    NotificationLogItem,
)
from sewer_monitor.services.lifecycle import (
    AlertLifecycleManager,
    AlertNotFoundError,
    AlertStateError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["alerts"])


def _alert_item(alert: Alert, location_name=None, latitude=None, longitude=None) -> AlertItem:
    item = AlertItem.model_validate(alert)
    item.location_name = location_name
    item.latitude = latitude
    item.longitude = longitude
    return item


def _transition_response(alert: Alert) -> AlertTransitionResponse:
    return AlertTransitionResponse(
        id=alert.id,
        status=alert.status,
        acknowledged_at=alert.acknowledged_at,
        resolved_at=alert.resolved_at,
    )


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    status_filter: str = Query("active", alias="status"),
    severity: str | None = Query(None),
    sensor_id: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List alerts newest first. ``status=all`` disables the status filter."""
    if status_filter != "all" and status_filter not in ALERT_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown alert status: {status_filter}")
    if severity and severity not in ALERT_SEVERITIES:
        raise HTTPException(status_code=400, detail=f"Unknown severity: {severity}")

    filters = []
    if status_filter != "all":
        filters.append(Alert.status == status_filter)
    if severity:
        filters.append(Alert.severity == severity)
    if sensor_id:
        filters.append(Alert.sensor_id == sensor_id)

    total = (await db.execute(select(func.count(Alert.id)).where(*filters))).scalar() or 0

    result = await db.execute(
        select(Alert, Sensor.location_name, Sensor.latitude, Sensor.longitude)
        .outerjoin(Sensor, Sensor.sensor_id == Alert.sensor_id)
        .where(*filters)
        .order_by(Alert.created_at.desc(), Alert.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )

    return AlertListResponse(
        items=[_alert_item(*row) for row in result.all()],
        total=total,
        page=page,
        per_page=per_page,
        pages=math.ceil(total / per_page) if total else 0,
    )


@router.get("/stats", response_model=AlertStatsResponse)
async def alert_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Alert counts for the last 24 hours."""
    since = utcnow() - timedelta(hours=24)
    is_active = Alert.status == "active"
    summary_row = (await db.execute(
        select(
            func.count(Alert.id),
            func.count(case((is_active, 1))),
            func.count(case((Alert.status == "acknowledged", 1))),
            func.count(case((Alert.status == "resolved", 1))),
            func.count(case((is_active & (Alert.severity == "critical"), 1))),
            func.count(case((is_active & (Alert.severity == "high"), 1))),
            func.count(case((is_active & (Alert.severity == "medium"), 1))),
            func.count(case((is_active & (Alert.severity == "low"), 1))),
        ).where(Alert.created_at >= since)
    )).one()

    summary = AlertStatsSummary(
        total=summary_row[0],
        active=summary_row[1],
        acknowledged=summary_row[2],
        resolved=summary_row[3],
        critical_active=summary_row[4],
        high_active=summary_row[5],
        medium_active=summary_row[6],
        low_active=summary_row[7],
    )

    by_type_rows = (await db.execute(
        select(
            Alert.alert_type,
            func.count(Alert.id),
            func.count(case((is_active, 1))),
        )
        .where(Alert.created_at >= since)
        .group_by(Alert.alert_type)
        .order_by(func.count(Alert.id).desc())
    )).all()

    return AlertStatsResponse(
        summary=summary,
        by_type=[
            AlertTypeCount(alert_type=alert_type, count=count, active_count=active)
            for alert_type, count, active in by_type_rows
        ],
    )


@router.get("/{alert_id}", response_model=AlertItem)
async def get_alert(
    alert_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Alert, Sensor.location_name, Sensor.latitude, Sensor.longitude)
        .outerjoin(Sensor, Sensor.sensor_id == Alert.sensor_id)
        .where(Alert.id == alert_id)
    )
    row = result.one_or_none()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found",
        )
    return _alert_item(*row)


@router.get("/{alert_id}/notifications", response_model=list[NotificationLogItem])
async def get_alert_notifications(
    alert_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Delivery attempts recorded for an alert."""
    result = await db.execute(
        select(NotificationLog)
        .where(NotificationLog.alert_id == alert_id)
        .order_by(NotificationLog.created_at, NotificationLog.id)
    )
    return [NotificationLogItem.model_validate(n) for n in result.scalars().all()]


@router.post("", response_model=AlertItem, status_code=status.HTTP_201_CREATED)
async def create_alert(
    payload: AlertCreateRequest,
    user: User = Depends(require_role("admin", "operator")),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle),
):
    """Raise an alert manually."""
    sensor = (await db.execute(
        select(Sensor).where(Sensor.sensor_id == payload.sensor_id)
    )).scalar_one_or_none()
    if sensor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sensor not found",
        )

    alert_data = dict(payload.alert_data or {})
    alert_data["created_by"] = user.username
    alert = await lifecycle.create_alert(
        db,
        sensor_id=payload.sensor_id,
        alert_type=payload.alert_type,
        severity=payload.severity,
        message=payload.message,
        alert_data=alert_data,
    )
    return _alert_item(alert, sensor.location_name, sensor.latitude, sensor.longitude)


@router.put("/{alert_id}/acknowledge", response_model=AlertTransitionResponse)
async def acknowledge_alert(
    alert_id: int,
    user: User = Depends(require_role("admin", "operator")),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle),
):
    try:
        alert = await lifecycle.acknowledge(db, alert_id, user_id=user.id)
    except AlertNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return _transition_response(alert)


@router.put("/{alert_id}/resolve", response_model=AlertTransitionResponse)
async def resolve_alert(
    alert_id: int,
    payload: AlertResolveRequest | None = None,
    user: User = Depends(require_role("admin", "operator")),
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle),
):
    reason = payload.reason if payload else None
    try:
        alert = await lifecycle.resolve(db, alert_id, user_id=user.id, reason=reason)
    except AlertNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except AlertStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return _transition_response(alert)
