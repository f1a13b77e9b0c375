"""
Application configuration for the Ballon Boutique API.

Environment values are read once at import time (a local .env file is
honoured). Static shop data (address, order policy, delivery prices,
category groups) lives here as well so every module reads the same values.
"""
import logging
import os

from dotenv import load_dotenv

load_dotenv()

# Environment
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")
JWT_ALG = "HS256"
TOKEN_EXPIRE_MIN = int(os.getenv("TOKEN_EXPIRE_MIN", "60"))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "eur").lower()

SITE_URL = os.getenv("SITE_URL", "https://ballon-boutique.vercel.app").rstrip("/")

IMAGEKIT_URL_ENDPOINT = os.getenv("IMAGEKIT_URL_ENDPOINT")
IMAGEKIT_PUBLIC_KEY = os.getenv("IMAGEKIT_PUBLIC_KEY")
IMAGEKIT_PRIVATE_KEY = os.getenv("IMAGEKIT_PRIVATE_KEY")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE")

# Logging
log = logging.getLogger("boutique")
if not log.handlers:
    log.setLevel(LOG_LEVEL)
    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    log.addHandler(ch)
    if LOG_FILE:
        fh = logging.FileHandler(LOG_FILE)
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
        log.addHandler(fh)

# Shop
WHATSAPP_NUMBER = "4369020084085"

STORE_INFO = {
    "name": "Ballon Boutique",
    "slogan": "Wenn Momente zu Emotionen werden",
    "slogans": {
        "de": "Wenn Momente zu Emotionen werden",
        "en": "When moments become memories",
        "ru": "Когда мгновение становится эмоциями",
        "uk": "Коли миті стають спогадами",
    },
    "logo": "/logo.png",
    "favicon": "/favicon.ico",
    "apple_icon": "/apple-icon.png",
    "geo": {
        "region": "Styria",
        "region_code": "ST",
        "timezone": "Europe/Vienna",
    },
    "address": {
        "street": "Sandgasse 3/3",
        "city": "Knittelfeld",
        "postal_code": "8720",
        "country": "Austria",
        "country_code": "AT",
    },
    "contact": {
        "email": "ballonboutique.at@gmail.com",
        "phone": "+43 690 200 84085",
        "phone_e164": "+4369020084085",
        "whatsapp": WHATSAPP_NUMBER,
    },
    "social": {
        "instagram": "https://www.instagram.com/ballonboutique.at",
        "facebook": "https://www.facebook.com/share/1JrBrLkJ1M/",
    },
    "pickup": {"schedule": "24/7"},
    "delivery": {"hours": "16:00-21:00"},
    "order_policy": {
        "preparation_time_hours": 72,
        "cancellation_deadline_hours": 48,
        "min_pickup_days": 3,
    },
}

PAYMENT_CONFIG = {
    "full_online": {"enabled": True, "label": "Online Payment"},
    "cash": {
        "enabled": True,
        "requires_whatsapp": True,
        "only_for_pickup": True,
        "label": "Cash Payment",
    },
}

COURIER_DELIVERY_CITIES = [
    {"id": "knittelfeld", "name": "Knittelfeld", "price": 10},
    {"id": "spielberg", "name": "Spielberg", "price": 13},
    {"id": "fohnsdorf", "name": "Fohnsdorf", "price": 20},
    {"id": "judenburg", "name": "Judenburg", "price": 23},
    {"id": "st-margarethen-bei-knittelfeld", "name": "St. Margarethen bei Knittelfeld", "price": 11},
    {"id": "kobenz", "name": "Kobenz", "price": 12},
    {"id": "kraubath-an-der-mur", "name": "Kraubath an der Mur", "price": 20},
    {"id": "sankt-michael-in-obersteiermark", "name": "Sankt Michael in Obersteiermark", "price": 20},
    {"id": "leoben", "name": "Leoben", "price": 36},
]

CATEGORY_GROUPS = [
    {"value": "for-kids", "label": "For Kids", "icon": "/icons/kids.webp",
     "description": "Colourful balloon sets and figures for children's parties."},
    {"value": "for-her", "label": "For Her", "icon": "/icons/her.webp",
     "description": "Balloon bouquets and surprises for her."},
    {"value": "for-him", "label": "For Him", "icon": "/icons/him.webp",
     "description": "Balloon gifts and decorations for him."},
    {"value": "love", "label": "Love", "icon": "/icons/love.webp",
     "description": "Hearts, bouquets and romantic balloon arrangements."},
    {"value": "mom", "label": "Mom", "icon": "/icons/mom.webp",
     "description": "Balloon gifts for mothers."},
    {"value": "baby-birth", "label": "Baby Birth", "icon": "/icons/baby.webp",
     "description": "Welcome-baby and gender reveal balloons."},
    {"value": "surprise-in-a-balloon", "label": "Surprise in a Balloon", "icon": "/icons/surprise.webp",
     "description": "Giant balloons filled with surprises."},
    {"value": "anniversary", "label": "Anniversary", "icon": "/icons/anniversary.webp",
     "description": "Numbers and sets for anniversaries and jubilees."},
    {"value": "balloon-bouquets", "label": "Balloon Bouquets", "icon": "/icons/bouquets.webp",
     "description": "Ready-made balloon bouquets."},
    {"value": "for-any-event", "label": "For Any Event", "icon": "/icons/event.webp",
     "description": "Decorations for any celebration."},
]

LOCALES = ("de", "en", "ru", "uk")
DEFAULT_LOCALE = "de"
