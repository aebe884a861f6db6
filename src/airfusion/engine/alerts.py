"""Alert lifecycle: activation, escalation, hysteresis and resolution."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from airfusion.engine.advisory import advisory_for
from airfusion.engine.hotspots import HotspotUpdate
from airfusion.models.alert import Alert, AlertState, AlertTransition, TransitionReason
from airfusion.models.hotspot import Hotspot
from airfusion.models.severity import SeverityTier

if TYPE_CHECKING:
    from airfusion.config import FusionConfig

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _AlertTrack:
    alert: Alert
    critical_streak: int = 0


@dataclass(frozen=True)
class AlertUpdate:
    """Result of :meth:`AlertStateMachine.evaluate`, not yet committed."""

    tracks: dict[str, _AlertTrack]
    transitions: tuple[AlertTransition, ...] = ()
    resolved: tuple[Alert, ...] = ()
    next_sequence: int = 1

    @property
    def open_alerts(self) -> tuple[Alert, ...]:
        return tuple(sorted((track.alert for track in self.tracks.values()), key=lambda a: a.alert_id))


class AlertStateMachine:
    """Drive one alert per hotspot through NONE, ACTIVE, ESCALATED, RESOLVED.

    Open alerts are keyed by hotspot id, so a hotspot can never hold two
    open alerts. Repeated qualifying cycles only refresh the open alert.
    RESOLVED is terminal; a later detection opens a new alert id.
    """

    def __init__(
        self,
        *,
        floor_tier: SeverityTier = SeverityTier.UNHEALTHY_FOR_SENSITIVE,
        critical_tier: SeverityTier = SeverityTier.UNHEALTHY,
        escalation_window: int = 2,
        hysteresis_cycles: int = 2,
        history_size: int = 100,
    ) -> None:
        self._floor_tier = floor_tier
        self._critical_tier = critical_tier
        self._escalation_window = escalation_window
        self._hysteresis_cycles = hysteresis_cycles
        self._tracks: dict[str, _AlertTrack] = {}
        self._history: deque[Alert] = deque(maxlen=history_size)
        self._sequence = 1

    @classmethod
    def from_config(cls, config: FusionConfig) -> AlertStateMachine:
        return cls(
            floor_tier=config.alert_floor_tier,
            critical_tier=config.critical_tier,
            escalation_window=config.escalation_window,
            hysteresis_cycles=config.hysteresis_cycles,
            history_size=config.resolved_alert_history,
        )

    def open_alerts(self) -> tuple[Alert, ...]:
        return tuple(sorted((track.alert for track in self._tracks.values()), key=lambda a: a.alert_id))

    def history(self) -> tuple[Alert, ...]:
        """Resolved alerts, oldest first."""
        return tuple(self._history)

    def alert_for(self, hotspot_id: str) -> Alert | None:
        track = self._tracks.get(hotspot_id)
        return track.alert if track is not None else None

    def evaluate(self, hotspots: HotspotUpdate, *, cycle: int, now: datetime) -> AlertUpdate:
        """Compute alert transitions for a hotspot update without committing."""
        tracks = dict(self._tracks)
        sequence = self._sequence
        transitions: list[AlertTransition] = []
        resolved: list[Alert] = []

        def resolve(hotspot_id: str, reason: TransitionReason) -> None:
            track = tracks.pop(hotspot_id)
            alert = track.alert.model_copy(
                update={"state": AlertState.RESOLVED, "last_transition_at": now, "resolution": reason}
            )
            transitions.append(self._transition(track.alert, alert, reason, cycle=cycle, now=now))
            resolved.append(alert)

        for hotspot in hotspots.retired:
            if hotspot.hotspot_id in tracks:
                reason = TransitionReason.MERGED if hotspot.merged_into else TransitionReason.RETIRED
                resolve(hotspot.hotspot_id, reason)

        for hotspot in hotspots.hotspots:
            track = tracks.get(hotspot.hotspot_id)
            if hotspot.confirmed and hotspot.severity >= self._floor_tier:
                if track is None:
                    alert_id = f"AL-{sequence:06d}"
                    sequence += 1
                    tracks[hotspot.hotspot_id] = self._activate(alert_id, hotspot, now, transitions, cycle)
                else:
                    tracks[hotspot.hotspot_id] = self._refresh(track, hotspot, now, transitions, cycle)
            elif track is not None:
                if hotspot.missed_cycles >= self._hysteresis_cycles:
                    resolve(hotspot.hotspot_id, TransitionReason.HYSTERESIS)
                else:
                    tracks[hotspot.hotspot_id] = _AlertTrack(track.alert, critical_streak=0)

        return AlertUpdate(
            tracks=tracks,
            transitions=tuple(transitions),
            resolved=tuple(resolved),
            next_sequence=sequence,
        )

    def commit(self, update: AlertUpdate) -> None:
        for transition in update.transitions:
            _logger.debug(
                "Alert %s (%s): %s -> %s [%s]",
                transition.alert_id,
                transition.hotspot_id,
                transition.old_state,
                transition.new_state,
                transition.reason,
            )
        self._tracks = dict(update.tracks)
        self._history.extend(update.resolved)
        self._sequence = update.next_sequence

    def process(self, hotspots: HotspotUpdate, *, cycle: int, now: datetime) -> tuple[AlertTransition, ...]:
        update = self.evaluate(hotspots, cycle=cycle, now=now)
        self.commit(update)
        return update.transitions

    def _activate(
        self,
        alert_id: str,
        hotspot: Hotspot,
        now: datetime,
        transitions: list[AlertTransition],
        cycle: int,
    ) -> _AlertTrack:
        alert = Alert(
            alert_id=alert_id,
            hotspot_id=hotspot.hotspot_id,
            pollutant=hotspot.pollutant,
            severity=hotspot.severity,
            activation_severity=hotspot.severity,
            peak_severity=hotspot.severity,
            state=AlertState.ACTIVE,
            created_at=now,
            last_transition_at=now,
            last_seen_at=now,
        )
        transitions.append(
            AlertTransition(
                alert_id=alert_id,
                hotspot_id=hotspot.hotspot_id,
                old_state=AlertState.NONE,
                new_state=AlertState.ACTIVE,
                severity=hotspot.severity,
                timestamp=now,
                pollutant=hotspot.pollutant,
                reason=TransitionReason.DETECTED,
                cycle=cycle,
                advisory=advisory_for(hotspot.severity),
            )
        )
        streak = 1 if hotspot.severity >= self._critical_tier else 0
        return _AlertTrack(alert, critical_streak=streak)

    def _refresh(
        self,
        track: _AlertTrack,
        hotspot: Hotspot,
        now: datetime,
        transitions: list[AlertTransition],
        cycle: int,
    ) -> _AlertTrack:
        previous = track.alert
        streak = track.critical_streak + 1 if hotspot.severity >= self._critical_tier else 0
        alert = previous.model_copy(
            update={
                "severity": hotspot.severity,
                "peak_severity": max(previous.peak_severity, hotspot.severity),
                "last_seen_at": now,
            }
        )
        if previous.state == AlertState.ACTIVE:
            reason: TransitionReason | None = None
            if hotspot.severity >= previous.activation_severity + 1:
                reason = TransitionReason.SEVERITY_WORSENED
            elif streak >= self._escalation_window:
                reason = TransitionReason.CRITICAL_PERSISTED
            if reason is not None:
                alert = alert.model_copy(update={"state": AlertState.ESCALATED, "last_transition_at": now})
                transitions.append(self._transition(previous, alert, reason, cycle=cycle, now=now))
        return _AlertTrack(alert, critical_streak=streak)

    @staticmethod
    def _transition(
        old: Alert,
        new: Alert,
        reason: TransitionReason,
        *,
        cycle: int,
        now: datetime,
    ) -> AlertTransition:
        return AlertTransition(
            alert_id=new.alert_id,
            hotspot_id=new.hotspot_id,
            old_state=old.state,
            new_state=new.state,
            severity=new.severity,
            timestamp=now,
            pollutant=new.pollutant,
            reason=reason,
            cycle=cycle,
            advisory=advisory_for(new.severity) if new.state != AlertState.RESOLVED else None,
        )
