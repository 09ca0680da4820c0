from __future__ import annotations

from pydantic import ValidationError

from campus_sos.domain.models import SosButtonPosition
from campus_sos.infra.redis_state import read_json, scoped_key, write_json

SOS_BUTTON_KEY = "sos_button_position"


class PreferenceService:
    def _key(self, user_id: str) -> str:
        return scoped_key("prefs", user_id, SOS_BUTTON_KEY)

    def get_sos_button_position(self, user_id: str) -> SosButtonPosition | None:
        raw = read_json(self._key(user_id))
        if raw is None:
            return None
        try:
            return SosButtonPosition.model_validate(raw)
        except ValidationError:
            return None

    def set_sos_button_position(self, user_id: str, position: SosButtonPosition) -> SosButtonPosition:
        write_json(self._key(user_id), position.model_dump())
        return position
