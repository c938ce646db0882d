import asyncio
import json

from firebase_admin import App, auth, credentials, get_app, initialize_app
from firebase_admin.exceptions import FirebaseError

from app.helpers.config import CONFIG
from app.helpers.logging import logger

_APP_NAME = "reminder-notify"


def firebase_app() -> App:
    """
    Get the Firebase app, initialized on first use.

    Credentials are the configured service account, or the Application Default Credentials.

    Returns an `App` instance.
    """
    try:
        return get_app(_APP_NAME)
    except ValueError:
        pass

    config = CONFIG.firebase
    options = {"projectId": config.project_id} if config.project_id else None
    if config.service_account:
        logger.debug("Using Firebase service account credentials")
        credential = credentials.Certificate(
            json.loads(config.service_account.get_secret_value())
        )
    else:
        logger.debug("Using Firebase default credentials")
        credential = credentials.ApplicationDefault()
    return initialize_app(
        credential=credential,
        name=_APP_NAME,
        options=options,
    )


async def verify_id_token(id_token: str) -> str | None:
    """
    Verify a Firebase ID token.

    Revoked, expired and malformed tokens are all refused, as are tokens of disabled users. Revocation is checked against the user account, one more request per call.

    Returns the user identifier, or `None` if the token is not valid.
    """
    try:
        # SDK is sync, public keys are fetched over the network then cached
        decoded = await asyncio.to_thread(
            auth.verify_id_token,
            app=firebase_app(),
            check_revoked=True,
            id_token=id_token,
        )
    except (ValueError, FirebaseError) as e:
        logger.info("Refused ID token: %s", e)
        return None
    return decoded.get("uid")
