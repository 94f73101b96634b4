import json
import os
import base64
import logging
from dataclasses import dataclass

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError


def get_log_level() -> int:
    """LOG_LEVEL desconocido cae a INFO en vez de romper la carga del módulo."""
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


logger = logging.getLogger()
logger.setLevel(get_log_level())

# httpx registra la URL completa en INFO y la URL lleva el token del bot.
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"

MIN_MESSAGE_LENGTH = 5
MAX_RATING = 5
DEFAULT_USER_AGENT = "Not available"

FILLED_STAR = "⭐"
EMPTY_STAR = "✩"
SEPARATOR = "--------------------------------------"


# ---------------------------
# Configuración
# ---------------------------

@dataclass(frozen=True)
class Credentials:
    bot_token: str
    chat_id: str

    def is_complete(self) -> bool:
        return bool(self.bot_token) and bool(self.chat_id)


def get_ssm_client():
    return boto3.client("ssm")


def fetch_token_from_ssm(parameter_name: str) -> str:
    """Lee el token del bot desde Parameter Store (SecureString)."""
    try:
        response = get_ssm_client().get_parameter(
            Name=parameter_name,
            WithDecryption=True
        )
    except (ClientError, BotoCoreError) as e:
        logger.error("Could not read bot token parameter %s: %s", parameter_name, type(e).__name__)
        return ""
    return response["Parameter"]["Value"]


def load_credentials() -> Credentials:
    """
    Se lee en cada invocación, nunca al importar el módulo.
    TELEGRAM_BOT_TOKEN tiene prioridad sobre TELEGRAM_BOT_TOKEN_PARAMETER.
    """
    bot_token = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    parameter_name = os.environ.get("TELEGRAM_BOT_TOKEN_PARAMETER")

    if not bot_token and parameter_name:
        bot_token = fetch_token_from_ssm(parameter_name)

    return Credentials(
        bot_token=bot_token,
        chat_id=os.environ.get("TELEGRAM_CHAT_ID", "")
    )


# ---------------------------
# Helpers
# ---------------------------

def text_response(status_code: int, body: str) -> dict:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "text/plain; charset=utf-8"},
        "body": body
    }


def get_http_method(event) -> str:
    """Netlify / API Gateway REST usan httpMethod; HTTP API v2 lo anida en requestContext."""
    method = event.get("httpMethod")
    if method:
        return method
    return ((event.get("requestContext") or {}).get("http") or {}).get("method", "")


def get_header(event, name: str):
    headers = event.get("headers") or {}
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def parse_event_body(event):
    """
    Maneja body normal y body base64 (API Gateway v2).
    Un body ausente o inválido lanza excepción.
    """
    body = event.get("body")

    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")

    return json.loads(body)


def redact(text: str, secret: str) -> str:
    if not secret:
        return text
    return text.replace(secret, "***")


# ---------------------------
# Validación y formato
# ---------------------------

def is_valid_message(message) -> bool:
    return isinstance(message, str) and len(message) >= MIN_MESSAGE_LENGTH


def is_valid_rating(rating) -> bool:
    # bool es subclase de int
    if isinstance(rating, bool) or not isinstance(rating, (int, float)):
        return False
    if isinstance(rating, float) and not rating.is_integer():
        return False
    return 1 <= rating <= MAX_RATING


def render_stars(rating: int) -> str:
    return FILLED_STAR * rating + EMPTY_STAR * (MAX_RATING - rating)


def build_notification_text(message: str, rating: int, user_agent: str) -> str:
    # El mensaje del usuario va tal cual, sin escapar Markdown.
    return "\n".join([
        "📝 *New Feedback Received!*",
        SEPARATOR,
        f"*Rating:* {render_stars(rating)} ({rating}/{MAX_RATING})",
        "*Message:*",
        message,
        SEPARATOR,
        f"*From:* `{user_agent}`"
    ])


# ---------------------------
# Telegram
# ---------------------------

def build_payload(chat_id: str, text: str) -> dict:
    return {
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "Markdown"
    }


def send_telegram_message(bot_token: str, payload: dict) -> httpx.Response:
    url = TELEGRAM_API_URL.format(token=bot_token)
    return httpx.post(
        url,
        json=payload,
        headers={"Content-Type": "application/json"}
    )


def read_error_body(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text


# ---------------------------
# Lógica de negocio
# ---------------------------

def handle_request(event, credentials: Credentials = None) -> dict:
    """
    Sin credenciales explícitas se cargan del entorno, siempre
    después de la comprobación del método.
    """
    if get_http_method(event) != "POST":
        return text_response(405, "Method Not Allowed")

    if credentials is None:
        credentials = load_credentials()

    if not credentials.is_complete():
        logger.error("Bot token or chat id not configured in environment variables.")
        return text_response(500, "Server configuration error.")

    try:
        body = parse_event_body(event)
        if body is None:
            raise TypeError("JSON body is null")
        if not isinstance(body, dict):
            body = {}

        message = body.get("message")
        rating = body.get("rating")

        if not is_valid_message(message):
            return text_response(400, "Invalid or too short message.")
        if not is_valid_rating(rating):
            return text_response(400, "Invalid rating.")

        user_agent = get_header(event, "user-agent") or DEFAULT_USER_AGENT

        text = build_notification_text(message, int(rating), user_agent)
        payload = build_payload(credentials.chat_id, text)

        response = send_telegram_message(credentials.bot_token, payload)

        if not response.is_success:
            logger.error(
                "Telegram API error (%s): %s",
                response.status_code,
                read_error_body(response)
            )
            return text_response(502, "Failed to send message via Telegram.")

        logger.info("Feedback relayed (rating %s/%s)", int(rating), MAX_RATING)
        return text_response(200, "Success")

    except Exception as e:
        # El token forma parte de la URL; puede aparecer en el texto de la excepción.
        logger.error("❌ Error: %s: %s", type(e).__name__, redact(str(e), credentials.bot_token))
        return text_response(500, "An internal error occurred.")


# ---------------------------
# Lambda Handler
# ---------------------------

def lambda_handler(event, context):
    """
    Punto de entrada de la función.
    Delega en el manejador real, que lee la configuración.
    """
    logger.debug("EVENT >>> %s %s", get_http_method(event), event.get("body"))
    return handle_request(event)
