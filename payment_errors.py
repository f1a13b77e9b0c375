"""
Customer-facing messages for card payment failures.

Stripe errors reach us either as exception/dict objects with a `type` and a
`code`/`decline_code`, or as bare strings that went through a transport layer
and picked up prefixes. Both are mapped to a short localized sentence; raw
processor text is only shown when it is short and free of stack noise.
"""
import json
import re
from typing import Optional

import stripe

from config import DEFAULT_LOCALE

MESSAGES = {
    "couldNotComplete": {
        "de": "Die Zahlung konnte nicht abgeschlossen werden. Bitte versuchen Sie es erneut.",
        "en": "We couldn't complete your payment. Please try again.",
        "ru": "Не удалось завершить оплату. Пожалуйста, попробуйте ещё раз.",
        "uk": "Не вдалося завершити оплату. Будь ласка, спробуйте ще раз.",
    },
    "fraudDetected": {
        "de": "Die Zahlung wurde aus Sicherheitsgründen abgelehnt. Bitte kontaktieren Sie Ihre Bank.",
        "en": "The payment was blocked for security reasons. Please contact your bank.",
        "ru": "Платёж отклонён по соображениям безопасности. Обратитесь в свой банк.",
        "uk": "Платіж відхилено з міркувань безпеки. Зверніться до свого банку.",
    },
    "cardDeclined": {
        "de": "Ihre Karte wurde abgelehnt. Bitte verwenden Sie eine andere Karte.",
        "en": "Your card was declined. Please use a different card.",
        "ru": "Ваша карта была отклонена. Пожалуйста, используйте другую карту.",
        "uk": "Вашу картку відхилено. Будь ласка, використайте іншу картку.",
    },
    "expiredCard": {
        "de": "Ihre Karte ist abgelaufen.",
        "en": "Your card has expired.",
        "ru": "Срок действия вашей карты истёк.",
        "uk": "Термін дії вашої картки минув.",
    },
    "insufficientFunds": {
        "de": "Auf Ihrer Karte ist nicht genügend Guthaben vorhanden.",
        "en": "Your card has insufficient funds.",
        "ru": "На вашей карте недостаточно средств.",
        "uk": "На вашій картці недостатньо коштів.",
    },
    "lostCard": {
        "de": "Die Karte wurde als verloren gemeldet.",
        "en": "This card has been reported lost.",
        "ru": "Карта заявлена как утерянная.",
        "uk": "Картку заявлено як втрачену.",
    },
    "stolenCard": {
        "de": "Die Karte wurde als gestohlen gemeldet.",
        "en": "This card has been reported stolen.",
        "ru": "Карта заявлена как украденная.",
        "uk": "Картку заявлено як викрадену.",
    },
    "incorrectCvc": {
        "de": "Der Sicherheitscode der Karte ist falsch.",
        "en": "Your card's security code is incorrect.",
        "ru": "Неверный код безопасности карты.",
        "uk": "Невірний код безпеки картки.",
    },
    "incorrectNumber": {
        "de": "Die Kartennummer ist falsch.",
        "en": "Your card number is incorrect.",
        "ru": "Неверный номер карты.",
        "uk": "Невірний номер картки.",
    },
    "processingError": {
        "de": "Bei der Verarbeitung Ihrer Karte ist ein Fehler aufgetreten. Bitte versuchen Sie es erneut.",
        "en": "An error occurred while processing your card. Please try again.",
        "ru": "При обработке карты произошла ошибка. Пожалуйста, попробуйте ещё раз.",
        "uk": "Під час обробки картки сталася помилка. Будь ласка, спробуйте ще раз.",
    },
    "tooManyAttempts": {
        "de": "Zu viele Zahlungsversuche. Bitte versuchen Sie es später erneut.",
        "en": "Too many payment attempts. Please try again later.",
        "ru": "Слишком много попыток оплаты. Попробуйте позже.",
        "uk": "Забагато спроб оплати. Спробуйте пізніше.",
    },
    "invalidRequest": {
        "de": "Die Zahlungsanfrage ist ungültig.",
        "en": "The payment request was invalid.",
        "ru": "Некорректный запрос на оплату.",
        "uk": "Некоректний запит на оплату.",
    },
    "connectionError": {
        "de": "Keine Verbindung zum Zahlungsdienst. Bitte prüfen Sie Ihre Internetverbindung.",
        "en": "Could not reach the payment service. Please check your connection.",
        "ru": "Нет соединения с платёжным сервисом. Проверьте подключение к интернету.",
        "uk": "Немає з'єднання з платіжним сервісом. Перевірте підключення до інтернету.",
    },
    "serviceError": {
        "de": "Der Zahlungsdienst ist vorübergehend nicht verfügbar.",
        "en": "The payment service is temporarily unavailable.",
        "ru": "Платёжный сервис временно недоступен.",
        "uk": "Платіжний сервіс тимчасово недоступний.",
    },
    "authenticationError": {
        "de": "Die Zahlung konnte nicht authentifiziert werden.",
        "en": "The payment could not be authenticated.",
        "ru": "Не удалось пройти аутентификацию платежа.",
        "uk": "Не вдалося автентифікувати платіж.",
    },
    "rateLimit": {
        "de": "Zu viele Anfragen. Bitte warten Sie einen Moment.",
        "en": "Too many requests. Please wait a moment.",
        "ru": "Слишком много запросов. Пожалуйста, подождите.",
        "uk": "Забагато запитів. Будь ласка, зачекайте.",
    },
    "duplicateRequest": {
        "de": "Diese Zahlung wird bereits bearbeitet.",
        "en": "This payment is already being processed.",
        "ru": "Этот платёж уже обрабатывается.",
        "uk": "Цей платіж уже обробляється.",
    },
}

CARD_ERROR_CODES = {
    "fraud_detected": "fraudDetected",
    "card_declined": "cardDeclined",
    "generic_decline": "cardDeclined",
    "expired_card": "expiredCard",
    "insufficient_funds": "insufficientFunds",
    "lost_card": "lostCard",
    "stolen_card": "stolenCard",
    "incorrect_cvc": "incorrectCvc",
    "incorrect_number": "incorrectNumber",
    "processing_error": "processingError",
    "card_velocity_exceeded": "tooManyAttempts",
}

ERROR_TYPES = {
    "invalid_request_error": "invalidRequest",
    "api_connection_error": "connectionError",
    "api_error": "serviceError",
    "authentication_error": "authenticationError",
    "rate_limit_error": "rateLimit",
    "idempotency_error": "duplicateRequest",
}

EXCEPTION_TYPES = (
    (stripe.CardError, "card_error"),
    (stripe.InvalidRequestError, "invalid_request_error"),
    (stripe.APIConnectionError, "api_connection_error"),
    (stripe.AuthenticationError, "authentication_error"),
    (stripe.RateLimitError, "rate_limit_error"),
    (stripe.IdempotencyError, "idempotency_error"),
    (stripe.APIError, "api_error"),
)

DECLINE_CODE_RE = re.compile(
    r"\b(generic_decline|insufficient_funds|lost_card|stolen_card|expired_card|incorrect_cvc"
    r"|processing_error|incorrect_number|card_velocity_exceeded|card_declined)\b",
    re.IGNORECASE,
)

MAX_RAW_MESSAGE_LENGTH = 400


def message(key: str, locale: Optional[str] = None) -> str:
    texts = MESSAGES[key]
    return texts.get(locale or DEFAULT_LOCALE) or texts[DEFAULT_LOCALE]


def stripe_error_details(err: stripe.StripeError) -> dict:
    """Flatten a Stripe exception into {type, code, decline_code, message}."""
    error = getattr(err, "error", None)
    error_type = getattr(error, "type", None)
    if not error_type:
        for exc_class, name in EXCEPTION_TYPES:
            if isinstance(err, exc_class):
                error_type = name
                break
    return {
        "type": error_type,
        "code": getattr(err, "code", None) or getattr(error, "code", None),
        "decline_code": getattr(error, "decline_code", None),
        "message": getattr(err, "user_message", None) or getattr(error, "message", None),
    }


def _structured(details: dict, locale: Optional[str]) -> str:
    error_type = details.get("type")
    code = details.get("code") or details.get("decline_code") or error_type
    text = details.get("message")

    if error_type == "card_error":
        if code in CARD_ERROR_CODES:
            return message(CARD_ERROR_CODES[code], locale)
        return text or message("cardDeclined", locale)
    if error_type in ERROR_TYPES:
        return text or message(ERROR_TYPES[error_type], locale)
    return text or message("couldNotComplete", locale)


def clean_raw_message(raw: str) -> str:
    raw = re.sub(r"\[[^\]]+\]\s*", "", raw)
    raw = re.sub(r"\bServer Error\b[:\s]*", "", raw, count=1, flags=re.IGNORECASE)
    raw = re.sub(r"\bUncaught Error:?\s*", "", raw, count=1, flags=re.IGNORECASE)
    raw = re.sub(r"^Uncaught:\s*", "", raw, flags=re.IGNORECASE)
    raw = re.sub(r"\bCalled by client\b[:\s-]*", "", raw, flags=re.IGNORECASE)
    return re.sub(r"\s{2,}", " ", raw).strip()


def _fallback_text(raw: str) -> str:
    cleaned = re.sub(r"^error:\s*", "", raw, flags=re.IGNORECASE)
    cleaned = re.sub(r"\{.*\"stack\".*\}", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\n\s*at\s.+", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"at\s+[\w./<>:-]+\s*\(.+\)", "", cleaned, flags=re.IGNORECASE).strip()
    quoted = re.search(r"\"message\"\s*[:=]\s*\"([^\"]+)\"", cleaned, flags=re.IGNORECASE)
    if quoted:
        cleaned = quoted.group(1)
    return cleaned


def describe_payment_error(err, locale: Optional[str] = None) -> str:
    """Map a Stripe error (exception, dict or string) to a localized message."""
    if not err:
        return message("couldNotComplete", locale)

    if isinstance(err, stripe.StripeError):
        details = stripe_error_details(err)
        if details["type"]:
            return _structured(details, locale)
        raw = str(err)
    elif isinstance(err, dict):
        if err.get("type"):
            return _structured(err, locale)
        raw = err.get("message") or json.dumps(err)
    else:
        raw = str(err)

    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and parsed.get("type"):
        return _structured(parsed, locale)

    raw = clean_raw_message(raw)

    code = None
    if isinstance(err, dict):
        code = err.get("decline_code") or err.get("code")
    if not code:
        found = DECLINE_CODE_RE.search(raw)
        code = found.group(0) if found else None
    if code and code.lower() in CARD_ERROR_CODES and code.lower() != "fraud_detected":
        return message(CARD_ERROR_CODES[code.lower()], locale)

    cleaned = _fallback_text(raw)
    if 0 < len(cleaned) < MAX_RAW_MESSAGE_LENGTH:
        return cleaned
    return message("couldNotComplete", locale)
