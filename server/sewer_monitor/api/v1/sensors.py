import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.database import ensure_aware
from sewer_monitor.dependencies import get_db, get_current_user, get_lifecycle, require_role
from sewer_monitor.models import Alert, Sensor, SensorReading, ThresholdConfig, User
from sewer_monitor.schemas.sensor import (
    SensorCreateRequest,
    SensorStatus,
    SensorUpdateRequest,
    SensorResponse,
    SensorListResponse,
    ReadingRequest,
    ReadingResponse,
    ReadingIngestResponse,
    ReadingListResponse,
    ThresholdRequest,
    ThresholdResponse,
)
from sewer_monitor.services.lifecycle import AlertLifecycleManager
from sewer_monitor.services.reading_processor import process_reading

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sensors"])


async def _get_sensor_or_404(db: AsyncSession, sensor_id: str) -> Sensor:
    result = await db.execute(select(Sensor).where(Sensor.sensor_id == sensor_id))
    sensor = result.scalar_one_or_none()
    if sensor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sensor not found",
        )
    return sensor


def _sensor_response(sensor: Sensor, last_reading: datetime | None = None, active_alerts: int = 0) -> SensorResponse:
    return SensorResponse(
        sensor_id=sensor.sensor_id,
        location_name=sensor.location_name,
        latitude=sensor.latitude,
        longitude=sensor.longitude,
        sensor_type=sensor.sensor_type,
        status=sensor.status,
        configuration=sensor.configuration,
        installation_date=sensor.installation_date,
        created_at=sensor.created_at,
        last_reading=ensure_aware(last_reading),
        active_alerts=active_alerts or 0,
    )


def _sensor_overview_query():
    last_reading = (
        select(func.max(SensorReading.timestamp))
        .where(SensorReading.sensor_id == Sensor.sensor_id)
        .scalar_subquery()
    )
    active_alerts = (
        select(func.count(Alert.id))
        .where(Alert.sensor_id == Sensor.sensor_id, Alert.status == "active")
        .scalar_subquery()
    )
    return select(Sensor, last_reading.label("last_reading"), active_alerts.label("active_alerts"))


@router.get("", response_model=SensorListResponse)
async def list_sensors(
    status_filter: SensorStatus | None = Query(None, alias="status"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List sensors with their last reading time and active alert count."""
    query = _sensor_overview_query()
    if status_filter:
        query = query.where(Sensor.status == status_filter)
    result = await db.execute(query.order_by(Sensor.sensor_id))
    rows = result.all()

    return SensorListResponse(
        items=[_sensor_response(sensor, last, active) for sensor, last, active in rows],
        total=len(rows),
    )


@router.post("", response_model=SensorResponse, status_code=status.HTTP_201_CREATED)
async def create_sensor(
    payload: SensorCreateRequest,
    user: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    """Provision a new sensor."""
    sensor = Sensor(
        sensor_id=payload.sensor_id,
        location_name=payload.location_name,
        latitude=payload.latitude,
        longitude=payload.longitude,
        sensor_type=payload.sensor_type,
        configuration=payload.configuration or {},
        installation_date=payload.installation_date,
        status="active",
    )
    db.add(sensor)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A sensor with this ID already exists",
        )

    logger.info("Sensor %s provisioned at '%s'", sensor.sensor_id, sensor.location_name)
    return _sensor_response(sensor)


@router.get("/{sensor_id}", response_model=SensorResponse)
async def get_sensor(
    sensor_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(_sensor_overview_query().where(Sensor.sensor_id == sensor_id))
    row = result.one_or_none()
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sensor not found",
        )
    sensor, last, active = row
    return _sensor_response(sensor, last, active)


@router.put("/{sensor_id}", response_model=SensorResponse)
async def update_sensor(
    sensor_id: str,
    payload: SensorUpdateRequest,
    user: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    """Update sensor location, type, status or configuration."""
    sensor = await _get_sensor_or_404(db, sensor_id)

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )
    for field, value in changes.items():
        setattr(sensor, field, value)

    await db.commit()
    await db.refresh(sensor)
    logger.info("Sensor %s updated: %s", sensor_id, ", ".join(sorted(changes)))
    return _sensor_response(sensor)


@router.post("/{sensor_id}/readings", response_model=ReadingIngestResponse)
async def ingest_reading(
    sensor_id: str,
    payload: ReadingRequest,
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle),
):
    """
    Receive a reading from a sensor.

    The reading is classified, stored and then evaluated for alerts. The
    response reports the stored reading even if alerting degraded.
    """
    await _get_sensor_or_404(db, sensor_id)

    stored, _evaluation, alerts = await process_reading(db, sensor_id, payload.reading_data, lifecycle)

    return ReadingIngestResponse(**stored, alerts_created=[a.id for a in alerts])


@router.get("/{sensor_id}/readings", response_model=ReadingListResponse)
async def list_readings(
    sensor_id: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Readings of a sensor, newest first."""
    query = select(SensorReading).where(SensorReading.sensor_id == sensor_id)
    if start_date:
        query = query.where(SensorReading.timestamp >= start_date)
    if end_date:
        query = query.where(SensorReading.timestamp <= end_date)

    result = await db.execute(
        query.order_by(SensorReading.timestamp.desc()).offset(offset).limit(limit)
    )
    readings = result.scalars().all()

    return ReadingListResponse(
        items=[ReadingResponse.model_validate(r) for r in readings],
        count=len(readings),
    )


@router.get("/{sensor_id}/thresholds", response_model=list[ThresholdResponse])
async def list_thresholds(
    sensor_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _get_sensor_or_404(db, sensor_id)
    result = await db.execute(
        select(ThresholdConfig)
        .where(ThresholdConfig.sensor_id == sensor_id)
        .order_by(ThresholdConfig.parameter_name)
    )
    return [ThresholdResponse.model_validate(t) for t in result.scalars().all()]


@router.put("/{sensor_id}/thresholds/{parameter_name}", response_model=ThresholdResponse)
async def upsert_threshold(
    sensor_id: str,
    parameter_name: str,
    payload: ThresholdRequest,
    user: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    """Create or replace the warning/critical thresholds of one parameter."""
    await _get_sensor_or_404(db, sensor_id)

    if (
        payload.threshold_warning is not None
        and payload.threshold_critical is not None
        and payload.threshold_warning > payload.threshold_critical
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Warning threshold must not exceed critical threshold",
        )

    result = await db.execute(
        select(ThresholdConfig).where(
            ThresholdConfig.sensor_id == sensor_id,
            ThresholdConfig.parameter_name == parameter_name,
        )
    )
    config = result.scalar_one_or_none()
    if config is None:
        config = ThresholdConfig(sensor_id=sensor_id, parameter_name=parameter_name)
        db.add(config)

    config.threshold_warning = payload.threshold_warning
    config.threshold_critical = payload.threshold_critical
    config.enabled = payload.enabled

    await db.commit()
    await db.refresh(config)
    logger.info(
        "Thresholds for %s/%s set to warning=%s critical=%s enabled=%s",
        sensor_id,
        parameter_name,
        config.threshold_warning,
        config.threshold_critical,
        config.enabled,
    )
    return ThresholdResponse.model_validate(config)
