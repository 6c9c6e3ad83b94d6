"""Opaque callback state carried through the identity provider redirect.

The state is base64 of a JSON object::

    {"flow": "invitation", "realm": "groundup", "invitationToken": "...", "joinToken": null}
"""

import base64
import binascii
import json
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

logger = structlog.get_logger()


class AuthFlow(str, Enum):
    """Closed set of post-authentication flows."""

    INVITATION = "invitation"
    JOIN_LINK = "join_link"
    ENTERPRISE_FIRST_ADMIN = "enterprise_first_admin"
    NEW_ORG = "new_org"
    DEFAULT = "default"


# Result flow tags that are not dispatchable flows.
UNAUTHORIZED_SSO_ACCESS = "unauthorized_sso_access"
UNKNOWN_FLOW = "unknown"


class CallbackState(BaseModel):
    """Decoded callback state."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    flow: AuthFlow = AuthFlow.DEFAULT
    realm: str | None = None
    invitation_token: str | None = None
    join_token: str | None = None

    @field_validator("flow", mode="before")
    @classmethod
    def _unknown_flow_is_default(cls, value: Any) -> Any:
        if value is None:
            return AuthFlow.DEFAULT
        if isinstance(value, str) and value not in AuthFlow._value2member_map_:
            logger.warning("unknown_auth_flow_in_state", flow=value)
            return AuthFlow.DEFAULT
        return value


def encode_state(state: CallbackState) -> str:
    """Encode state for the ``state`` query parameter."""
    payload = state.model_dump(mode="json", by_alias=True, exclude_none=True)
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


def decode_state(raw: str | None) -> CallbackState | None:
    """Decode callback state.

    Never raises: a missing or undecodable state is logged and reported as
    None so the caller can fall back to the default realm and flow.
    """
    if not raw:
        return None
    try:
        padded = raw + "=" * (-len(raw) % 4)
        data = json.loads(base64.b64decode(padded, validate=False).decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("state is not a JSON object")
        return CallbackState.model_validate(data)
    except (binascii.Error, UnicodeDecodeError, ValueError, PydanticValidationError) as e:
        logger.warning("callback_state_decode_failed", error=str(e))
        return None
