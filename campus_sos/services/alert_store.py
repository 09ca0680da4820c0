from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from campus_sos.domain.geo import normalize_coordinates
from campus_sos.domain.models import (
    AlertEvent,
    AlertRead,
    AlertStatus,
    ChangeEvent,
    ChangeType,
    EmergencyAlert,
    now_utc,
)
from campus_sos.infra.config import ALERT_FETCH_LIMIT
from campus_sos.infra.db import open_session
from campus_sos.infra.events import ChangeFeed, ChangeHandler, Subscription, change_feed

logger = logging.getLogger(__name__)

# Mutations commit and publish under one lock so the feed order is commit order.
_WRITE_LOCK = threading.Lock()

WRITABLE_FIELDS = ("id", "user_id", "user_name", "user_type", "status", "location", "additional_info", "created_at")


class AlertStoreError(Exception):
    pass


class NotFoundError(AlertStoreError):
    pass


class StoreUnavailable(AlertStoreError):
    pass


class AlertStore:
    def __init__(self, feed: ChangeFeed | None = None) -> None:
        self._feed = feed or change_feed

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    def _session(self) -> Session:
        return open_session()

    def _record_event(
        self,
        session: Session,
        event_type: ChangeType,
        *,
        alert_id: str,
        new: AlertRead | None,
        old: AlertRead | None,
        actor_id: str | None,
    ) -> ChangeEvent:
        record = AlertEvent(
            event_type=event_type,
            alert_id=alert_id,
            actor_id=actor_id,
            old=old.to_row() if old is not None else None,
            new=new.to_row() if new is not None else None,
        )
        session.add(record)
        session.flush()
        if record.seq is None:
            raise StoreUnavailable("alert event was not assigned a sequence number")
        return ChangeEvent(
            event_type=event_type,
            new=new,
            old=old,
            seq=record.seq,
            ts=record.ts,
            actor_id=actor_id,
        )

    def _build_record(self, payload: Mapping[str, Any]) -> EmergencyAlert:
        values = {key: payload[key] for key in WRITABLE_FIELDS if payload.get(key) is not None}
        if "user_id" not in values or "user_name" not in values:
            raise ValueError("alert requires user_id and user_name")
        latitude, longitude = normalize_coordinates(payload)
        info = payload.get("additional_info")
        if isinstance(info, Mapping):
            values["additional_info"] = dict(info)
        now = now_utc()
        values.setdefault("created_at", now)
        values.setdefault("status", AlertStatus.ACTIVE)
        return EmergencyAlert(**values, latitude=latitude, longitude=longitude, updated_at=now)

    def insert(self, payload: Mapping[str, Any], *, actor_id: str | None = None) -> AlertRead:
        record = self._build_record(payload)
        with _WRITE_LOCK:
            try:
                with self._session() as session:
                    session.add(record)
                    session.flush()
                    session.refresh(record)
                    stored = AlertRead.model_validate(record)
                    event = self._record_event(
                        session,
                        ChangeType.INSERT,
                        alert_id=stored.id,
                        new=stored,
                        old=None,
                        actor_id=actor_id or stored.user_id,
                    )
                    session.commit()
            except SQLAlchemyError as exc:
                logger.error("alert insert failed", extra={"user_id": record.user_id}, exc_info=True)
                raise StoreUnavailable("could not save the alert") from exc
            self._feed.publish(event)
        logger.info("alert stored", extra={"alert_id": stored.id, "user_id": stored.user_id, "seq": event.seq})
        return stored

    def get(self, alert_id: str) -> AlertRead:
        try:
            with self._session() as session:
                row = session.get(EmergencyAlert, alert_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailable("could not read alerts") from exc
        if row is None:
            raise NotFoundError("alert not found")
        return AlertRead.model_validate(row)

    def list_recent(self, limit: int = ALERT_FETCH_LIMIT, *, active_only: bool = False) -> list[AlertRead]:
        statement = select(EmergencyAlert)
        if active_only:
            statement = statement.where(EmergencyAlert.status == AlertStatus.ACTIVE)
        statement = statement.order_by(
            col(EmergencyAlert.created_at).desc(),
            col(EmergencyAlert.id).desc(),
        ).limit(limit)
        try:
            with self._session() as session:
                rows = list(session.exec(statement).all())
        except SQLAlchemyError as exc:
            raise StoreUnavailable("could not read alerts") from exc
        return [AlertRead.model_validate(item) for item in rows]

    def list_for_user(self, user_id: str, limit: int = 100) -> list[AlertRead]:
        statement = (
            select(EmergencyAlert)
            .where(EmergencyAlert.user_id == user_id)
            .order_by(col(EmergencyAlert.created_at).desc(), col(EmergencyAlert.id).desc())
            .limit(limit)
        )
        try:
            with self._session() as session:
                rows = list(session.exec(statement).all())
        except SQLAlchemyError as exc:
            raise StoreUnavailable("could not read alerts") from exc
        return [AlertRead.model_validate(item) for item in rows]

    def list_events(self, alert_id: str) -> list[AlertEvent]:
        try:
            with self._session() as session:
                return list(
                    session.exec(
                        select(AlertEvent).where(AlertEvent.alert_id == alert_id).order_by(col(AlertEvent.seq))
                    ).all()
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailable("could not read alert history") from exc

    def update_status(self, alert_id: str, status: AlertStatus, *, actor_id: str | None = None) -> AlertRead:
        with _WRITE_LOCK:
            try:
                with self._session() as session:
                    row = session.get(EmergencyAlert, alert_id)
                    if row is None:
                        raise NotFoundError("alert not found")
                    old = AlertRead.model_validate(row)
                    if row.status == status:
                        return old
                    row.status = status
                    row.updated_at = now_utc()
                    session.add(row)
                    session.flush()
                    session.refresh(row)
                    new = AlertRead.model_validate(row)
                    event = self._record_event(
                        session, ChangeType.UPDATE, alert_id=alert_id, new=new, old=old, actor_id=actor_id
                    )
                    session.commit()
            except SQLAlchemyError as exc:
                raise StoreUnavailable("could not update the alert") from exc
            self._feed.publish(event)
        return new

    def delete(self, alert_id: str, *, actor_id: str | None = None) -> bool:
        """Delete an alert; returns False when it was already gone."""
        with _WRITE_LOCK:
            try:
                with self._session() as session:
                    row = session.get(EmergencyAlert, alert_id)
                    if row is None:
                        return False
                    old = AlertRead.model_validate(row)
                    session.delete(row)
                    event = self._record_event(
                        session, ChangeType.DELETE, alert_id=alert_id, new=None, old=old, actor_id=actor_id
                    )
                    session.commit()
            except SQLAlchemyError as exc:
                raise StoreUnavailable("could not resolve the alert") from exc
            self._feed.publish(event)
        logger.info("alert deleted", extra={"alert_id": alert_id, "actor_id": actor_id, "seq": event.seq})
        return True

    def subscribe(self, handler: ChangeHandler) -> Subscription:
        return self._feed.subscribe(handler)


alert_store = AlertStore()
