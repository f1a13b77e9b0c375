"""
SEO metadata for the storefront pages.

German is the default locale and lives at the site root; the other locales
are served under a `/{locale}` prefix. Every page gets a canonical URL, an
hreflang map covering all locales plus `x-default`, Open Graph and Twitter
Card data, and robots directives. JSON-LD documents (organization,
breadcrumb, product) are plain dicts ready for `json.dumps`.
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from xml.etree import ElementTree as ET

import config
from config import DEFAULT_LOCALE, LOCALES, STORE_INFO

HREFLANG = {"de": "de-AT", "en": "en-US", "ru": "ru-RU", "uk": "uk-UA"}
OG_LOCALES = {"de": "de_AT", "en": "en_US", "ru": "ru_RU", "uk": "uk_UA"}

LEGAL_PAGES = ("terms", "privacy", "imprint", "cancellation")
ROBOTS_DISALLOW = (
    "/admin/",
    "/api/",
    "/profile/",
    "/cart/",
    "/checkout/",
    "/checkout/confirmant/",
    "/checkout/declined/",
)
STATIC_PAGES = (
    ("", 1.0, "daily"),
    ("catalog", 0.9, "weekly"),
    ("legal/terms", 0.5, "yearly"),
    ("legal/privacy", 0.5, "yearly"),
    ("legal/imprint", 0.5, "yearly"),
)

DEFAULT_DESCRIPTIONS = {
    "de": "Ballons für jeden Anlass. Wenn Momente zu Emotionen werden.",
    "en": "Balloons for every occasion. When moments become memories.",
    "ru": "Шары на любой случай. Когда мгновения становятся воспоминаниями.",
    "uk": "Кульки на будь-яку нагоду. Коли миті стають спогадами.",
}
HOME_TITLES = {
    "de": "Ballons für jeden Anlass",
    "en": "Balloons for every occasion",
    "ru": "Шары на любой случай",
    "uk": "Кульки на будь-яку нагоду",
}
CATALOG_TITLES = {
    "de": "Katalog",
    "en": "Catalog",
    "ru": "Каталог",
    "uk": "Каталог",
}
LEGAL_TITLES = {
    "de": {"terms": "AGB", "privacy": "Datenschutzerklärung", "imprint": "Impressum",
           "cancellation": "Widerrufsbelehrung"},
    "en": {"terms": "Terms & Conditions", "privacy": "Privacy Policy", "imprint": "Imprint",
           "cancellation": "Cancellation Policy"},
    "ru": {"terms": "Условия использования", "privacy": "Политика конфиденциальности",
           "imprint": "Импринт", "cancellation": "Политика возврата"},
    "uk": {"terms": "Умови використання", "privacy": "Політика конфіденційності",
           "imprint": "Імпринт", "cancellation": "Політика повернення"},
}

KEYWORDS = {
    "home": {
        "de": ["ballons österreich", "ballons steiermark", "ballons knittelfeld", "ballon dekor",
               "party dekor", "geburtstagsballons", "hochzeitsballons", "event dekor",
               "ballon lieferung", "ballon boutique", "wenn momente zu emotionen werden",
               "ballons online shop", "custom ballons", "personalisierte ballons", "ballon sets",
               "ballon arrangement"],
        "en": ["balloons austria", "balloons styria", "balloons knittelfeld", "balloon decorations",
               "party decorations", "birthday balloons", "wedding balloons", "event decorations",
               "balloon delivery", "balloon boutique", "when moments become memories",
               "balloons online shop", "custom balloons", "personalized balloons", "balloon sets",
               "balloon arrangements"],
        "ru": ["шары австрия", "шары стирия", "шары книттельфельд", "декор из шаров",
               "декор для вечеринки", "шары на день рождения", "шары на свадьбу",
               "декор для мероприятий", "доставка шаров", "ballon boutique",
               "когда мгновения становятся воспоминаниями", "интернет магазин шаров",
               "индивидуальные шары", "персонализированные шары", "наборы шаров",
               "композиции из шаров"],
        "uk": ["кульки австрія", "кульки штирія", "кульки кніттельфельд", "декор з кульок",
               "декор для вечірки", "кульки на день народження", "кульки на весілля",
               "декор для заходів", "доставка кульок", "ballon boutique",
               "коли миті стають спогадами", "інтернет магазин кульок", "індивідуальні кульки",
               "персоналізовані кульки", "набори кульок", "композиції з кульок"],
    },
    "catalog": {
        "de": ["ballons katalog", "ballons online", "ballon shop", "ballons kaufen",
               "party dekor shop", "event dekor", "ballon sets", "ballon arrangement",
               "custom ballons", "ballons österreich"],
        "en": ["balloons catalog", "balloons online", "balloon shop", "buy balloons",
               "party decoration shop", "event decorations", "balloon sets",
               "balloon arrangements", "custom balloons", "balloons austria"],
        "ru": ["каталог шаров", "шары онлайн", "магазин шаров", "купить шары", "магазин декора",
               "декор для мероприятий", "наборы шаров", "композиции из шаров",
               "индивидуальные шары", "шары австрия"],
        "uk": ["каталог кульок", "кульки онлайн", "магазин кульок", "купити кульки",
               "магазин декору", "декор для заходів", "набори кульок", "композиції з кульок",
               "індивідуальні кульки", "кульки австрія"],
    },
    "category": {
        "de": ["ballons", "ballon dekor", "party dekor", "event dekor", "ballons österreich",
               "ballons steiermark", "custom ballons", "ballon sets", "ballon arrangement"],
        "en": ["balloons", "balloon decorations", "party decorations", "event decorations",
               "balloons austria", "balloons styria", "custom balloons", "balloon sets",
               "balloon arrangements"],
        "ru": ["шары", "декор из шаров", "декор для вечеринки", "декор для мероприятий",
               "шары австрия", "шары стирия", "индивидуальные шары", "наборы шаров",
               "композиции из шаров"],
        "uk": ["кульки", "декор з кульок", "декор для вечірки", "декор для заходів",
               "кульки австрія", "кульки штирія", "індивідуальні кульки", "набори кульок",
               "композиції з кульок"],
    },
    "product": {
        "de": (["ballon", "ballon dekor"],
               ["ballons österreich", "custom ballon", "personalisierter ballon", "ballon set",
                "party dekor", "event dekor", "ballon boutique"]),
        "en": (["balloon", "balloon decoration"],
               ["balloons austria", "custom balloon", "personalized balloon", "balloon set",
                "party decoration", "event decoration", "balloon boutique"]),
        "ru": (["шар", "декор из шаров"],
               ["шары австрия", "индивидуальный шар", "персонализированный шар", "набор шаров",
                "декор для вечеринки", "декор для мероприятий", "ballon boutique"]),
        "uk": (["кулька", "декор з кульок"],
               ["кульки австрія", "індивідуальна кулька", "персоналізована кулька",
                "набір кульок", "декор для вечірки", "декор для заходів", "ballon boutique"]),
    },
    "legal": {
        "de": (["agb", "datenschutz", "impressum", "widerruf", "rechtliches", "ballon boutique",
                "ballons österreich"],
               {"terms": ["allgemeine geschäftsbedingungen", "agb", "nutzungsbedingungen"],
                "privacy": ["datenschutzerklärung", "dsgvo", "datenschutz", "privacy policy"],
                "imprint": ["impressum", "unternehmensangaben", "firmenangaben"],
                "cancellation": ["widerrufsrecht", "rückgabe", "stornierung", "widerruf"]}),
        "en": (["terms", "privacy", "imprint", "cancellation", "legal", "balloon boutique",
                "balloons austria"],
               {"terms": ["terms and conditions", "terms of service", "user agreement"],
                "privacy": ["privacy policy", "gdpr", "data protection", "privacy statement"],
                "imprint": ["imprint", "company information", "legal notice"],
                "cancellation": ["cancellation policy", "return policy", "refund policy",
                                 "cancellation"]}),
        "ru": (["условия", "конфиденциальность", "импринт", "отмена", "юридическая информация",
                "ballon boutique", "шары австрия"],
               {"terms": ["условия использования", "пользовательское соглашение", "условия продажи"],
                "privacy": ["политика конфиденциальности", "gdpr", "защита данных",
                            "конфиденциальность"],
                "imprint": ["импринт", "информация о компании", "юридическая информация"],
                "cancellation": ["политика возврата", "отмена заказа", "возврат средств",
                                 "отмена"]}),
        "uk": (["умови", "конфіденційність", "імпринт", "скасування", "юридична інформація",
                "ballon boutique", "кульки австрія"],
               {"terms": ["умови використання", "користувацька угода", "умови продажу"],
                "privacy": ["політика конфіденційності", "gdpr", "захист даних",
                            "конфіденційність"],
                "imprint": ["імпринт", "інформація про компанію", "юридична інформація"],
                "cancellation": ["політика повернення", "скасування замовлення",
                                 "повернення коштів", "скасування"]}),
    },
}


# Utilities
def resolve_locale(locale: Optional[str]) -> str:
    return locale if locale in LOCALES else DEFAULT_LOCALE


def base_url(locale: Optional[str] = None) -> str:
    if locale and locale != DEFAULT_LOCALE:
        return f"{config.SITE_URL}/{locale}"
    return config.SITE_URL


def canonical_url(path: str, locale: Optional[str] = None) -> str:
    prefix = f"/{locale}" if locale and locale != DEFAULT_LOCALE else ""
    clean_path = path if path.startswith("/") else f"/{path}"
    return f"{config.SITE_URL}{prefix}{clean_path}"


def absolute_url(url: str) -> str:
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"{config.SITE_URL}{url if url.startswith('/') else '/' + url}"


def site_name() -> str:
    return STORE_INFO["name"]


def default_description(locale: str) -> str:
    return DEFAULT_DESCRIPTIONS.get(locale, DEFAULT_DESCRIPTIONS["en"])


def format_price(price: float, currency: str = "EUR") -> str:
    """German style currency formatting, e.g. 1.234,50 €."""
    formatted = f"{price:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    symbol = "€" if currency == "EUR" else currency
    return f"{formatted} {symbol}"


def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."


def get_keywords(page: str, locale: str, *args) -> List[str]:
    locale = resolve_locale(locale)
    entry = KEYWORDS[page][locale]
    if page == "category":
        return [args[0].lower()] + entry
    if page == "product":
        product_name, category = args[0], args[1]
        colors = args[2] if len(args) > 2 else []
        head, tail = entry
        return [product_name.lower()] + head + [category.lower()] + [c.lower() for c in colors] + tail
    if page == "legal":
        base, specific = entry
        return base + specific[args[0]]
    return list(entry)


def alternates(path: str, locale: str) -> dict:
    languages = {HREFLANG[loc]: canonical_url(path, loc) for loc in LOCALES}
    languages["x-default"] = canonical_url(path, DEFAULT_LOCALE)
    return {"canonical": canonical_url(path, locale), "languages": languages}


def _robots() -> dict:
    return {
        "index": True,
        "follow": True,
        "nocache": False,
        "google_bot": {
            "index": True,
            "follow": True,
            "noimageindex": False,
            "max-video-preview": -1,
            "max-image-preview": "large",
            "max-snippet": -1,
        },
    }


def _page_metadata(locale: str, path: str, title: str, description: str, keywords: List[str],
                   images: List[dict], og_type: str = "website", other: Optional[dict] = None) -> dict:
    name = site_name()
    alt = alternates(path, locale)
    return {
        "title": title,
        "description": description,
        "keywords": keywords,
        "authors": [{"name": name, "url": config.SITE_URL}],
        "creator": name,
        "publisher": name,
        "application_name": name,
        "metadata_base": config.SITE_URL,
        "icons": {
            "icon": [{"url": STORE_INFO["favicon"], "sizes": "any"}],
            "apple": [{"url": STORE_INFO["apple_icon"], "sizes": "180x180", "type": "image/png"}],
        },
        "alternates": alt,
        "open_graph": {
            "type": og_type,
            "locale": OG_LOCALES[locale],
            "alternate_locale": [OG_LOCALES[loc] for loc in LOCALES if loc != locale],
            "url": alt["canonical"],
            "site_name": name,
            "title": title,
            "description": description,
            "images": images,
        },
        "twitter": {
            "card": "summary_large_image",
            "title": title,
            "description": description,
            "images": [img["url"] for img in images[:1]],
        },
        "robots": _robots(),
        "other": {
            "geo.region": f"{STORE_INFO['address']['country_code']}-{STORE_INFO['geo']['region_code']}",
            "geo.placename": STORE_INFO["address"]["city"],
            "business:contact_data:email": STORE_INFO["contact"]["email"],
            "business:contact_data:phone_number": STORE_INFO["contact"]["phone_e164"],
            "business:contact_data:website": config.SITE_URL,
            "DC.title": title,
            "DC.creator": name,
            "DC.description": description,
            "DC.language": locale,
            **(other or {}),
        },
    }


def _logo_image(alt: str, width: int = 1200, height: int = 630) -> dict:
    return {"url": absolute_url(STORE_INFO["logo"]), "width": width, "height": height,
            "alt": alt, "type": "image/png"}


# Page metadata
def home_metadata(locale: str) -> dict:
    locale = resolve_locale(locale)
    name = site_name()
    title = f"{name} | {HOME_TITLES[locale]}"
    slogan = STORE_INFO["slogans"].get(locale, STORE_INFO["slogan"])
    meta = _page_metadata(locale, "/", title, default_description(locale), get_keywords("home", locale),
                          [_logo_image(f"{name} - {slogan}")])
    meta["title_template"] = f"{name} | %s"
    return meta


def catalog_metadata(locale: str, category_group: Optional[dict] = None,
                     category: Optional[str] = None) -> dict:
    locale = resolve_locale(locale)
    name = site_name()
    path = "/catalog"
    if category_group and category:
        title = f"{category} - {category_group['label']} | {name}"
        description = f"{category} · {category_group['label']}. {default_description(locale)}"
        keywords = get_keywords("category", locale, category)
    elif category_group:
        title = f"{category_group['label']} | {name}"
        description = category_group.get("description") or default_description(locale)
        keywords = get_keywords("category", locale, category_group["label"])
    else:
        title = f"{CATALOG_TITLES[locale]} | {name}"
        description = default_description(locale)
        keywords = get_keywords("catalog", locale)
    return _page_metadata(locale, path, title, description, keywords, [_logo_image(title)])


def category_metadata(locale: str, category_group: dict) -> dict:
    locale = resolve_locale(locale)
    name = site_name()
    path = f"/{category_group['value']}"
    title = f"{category_group['label']} | {name}"
    description = category_group.get("description") or default_description(locale)
    image = absolute_url(category_group["icon"]) if category_group.get("icon") else absolute_url(STORE_INFO["logo"])
    return _page_metadata(
        locale, path, title, description,
        get_keywords("category", locale, category_group["label"]),
        [{"url": image, "width": 1200, "height": 630, "alt": category_group["label"], "type": "image/webp"}],
        other={"og:section": category_group["value"], "DC.subject": category_group["value"]},
    )


def product_metadata(locale: str, product: dict) -> dict:
    """`product` is a public product dict (with `_id` and `slug`)."""
    locale = resolve_locale(locale)
    name = site_name()
    path = f"/catalog/{product['slug']}"
    price = float(product.get("price", 0))
    title = f"{product['name']} | {name}"
    full_description = product.get("description") or f"{product['name']} - {format_price(price)}"
    description = truncate_text(full_description, 160)
    in_stock = bool(product.get("in_stock"))
    availability = "https://schema.org/InStock" if in_stock else "https://schema.org/OutOfStock"
    image_urls = product.get("image_urls") or [absolute_url(STORE_INFO["logo"])]
    images = [{"url": url, "width": 1200, "height": 1200, "alt": product["name"], "type": "image/jpeg"}
              for url in image_urls]

    meta = _page_metadata(
        locale, path, title, description,
        get_keywords("product", locale, product["name"], product.get("category_group", ""),
                     product.get("available_colors") or []),
        images,
        other={
            "product:price:amount": f"{price:g}",
            "product:price:currency": "EUR",
            "product:availability": "in stock" if in_stock else "out of stock",
            "product:condition": "new",
            "product:brand": name,
            "product:category": product.get("category_group"),
            "product:sku": product["_id"],
            "og:availability": availability,
            "DC.subject": product.get("category_group"),
            "DC.identifier": product["_id"],
        },
    )
    meta["category"] = product.get("category_group")
    return meta


def legal_metadata(locale: str, page_type: str) -> dict:
    locale = resolve_locale(locale)
    name = site_name()
    page_title = LEGAL_TITLES[locale][page_type]
    title = f"{page_title} | {name}"
    description = f"{page_title} · {name}"
    return _page_metadata(locale, f"/legal/{page_type}", title, description,
                          get_keywords("legal", locale, page_type), [_logo_image(title)])


# JSON-LD
def organization_jsonld(locale: Optional[str] = None) -> dict:
    url = base_url(locale)
    address = STORE_INFO["address"]
    return {
        "@context": "https://schema.org",
        "@type": "Organization",
        "name": STORE_INFO["name"],
        "url": url,
        "logo": absolute_url(STORE_INFO["logo"]),
        "description": STORE_INFO["slogan"],
        "address": {
            "@type": "PostalAddress",
            "streetAddress": address["street"],
            "addressLocality": address["city"],
            "postalCode": address["postal_code"],
            "addressCountry": address["country_code"],
        },
        "contactPoint": {
            "@type": "ContactPoint",
            "telephone": STORE_INFO["contact"]["phone"],
            "contactType": "customer service",
            "email": STORE_INFO["contact"]["email"],
            "areaServed": address["country_code"],
            "availableLanguage": list(LOCALES),
        },
        "sameAs": [STORE_INFO["social"]["instagram"], STORE_INFO["social"]["facebook"]],
    }


def breadcrumb_jsonld(items: Iterable[dict], locale: Optional[str] = None) -> dict:
    url = base_url(locale)
    return {
        "@context": "https://schema.org",
        "@type": "BreadcrumbList",
        "itemListElement": [
            {
                "@type": "ListItem",
                "position": index,
                "name": item["name"],
                "item": item["url"] if item["url"].startswith("http") else f"{url}{item['url']}",
            }
            for index, item in enumerate(items, start=1)
        ],
    }


def product_jsonld(product: dict, locale: str) -> dict:
    locale = resolve_locale(locale)
    image_urls = product.get("image_urls") or [absolute_url(STORE_INFO["logo"])]
    doc = {
        "@context": "https://schema.org",
        "@type": "Product",
        "name": product["name"],
        "description": product.get("description"),
        "image": image_urls,
        "sku": product["_id"],
        "mpn": product["_id"],
        "brand": {"@type": "Brand", "name": STORE_INFO["name"]},
        "offers": {
            "@type": "Offer",
            "url": canonical_url(f"/catalog/{product['slug']}", locale),
            "priceCurrency": "EUR",
            "price": f"{float(product.get('price', 0)):g}",
            "availability": "https://schema.org/InStock" if product.get("in_stock")
            else "https://schema.org/OutOfStock",
            "itemCondition": "https://schema.org/NewCondition",
            "seller": {"@type": "Organization", "name": STORE_INFO["name"]},
        },
        "category": product.get("category_group"),
    }
    sold_count = product.get("sold_count") or 0
    if sold_count > 0:
        doc["aggregateRating"] = {"@type": "AggregateRating", "ratingValue": "5", "reviewCount": sold_count}
    if product.get("available_colors"):
        doc["color"] = product["available_colors"]
    return doc


# Robots & sitemap
def robots_txt() -> str:
    lines = []
    for agent in ("*", "Googlebot", "Bingbot"):
        lines.append(f"User-agent: {agent}")
        lines.append("Allow: /")
        lines.extend(f"Disallow: {path}" for path in ROBOTS_DISALLOW)
        lines.append("")
    lines.append(f"Host: {config.SITE_URL}")
    lines.append(f"Sitemap: {config.SITE_URL}/sitemap.xml")
    return "\n".join(lines) + "\n"


def _localized_entries(path: str, priority: float, change_frequency: str,
                       last_modified: datetime, images: Optional[List[str]] = None) -> List[dict]:
    entries = []
    for locale in LOCALES:
        entries.append({
            "url": canonical_url(path, locale),
            "last_modified": last_modified,
            "change_frequency": change_frequency,
            "priority": priority,
            "alternates": alternates(path, locale)["languages"],
            "images": images or [],
        })
    return entries


def sitemap_entries(products: Iterable[dict], category_groups: Iterable[dict],
                    now: Optional[datetime] = None) -> List[dict]:
    now = now or datetime.now(timezone.utc)
    entries = []
    for path, priority, change_frequency in STATIC_PAGES:
        entries += _localized_entries(f"/{path}", priority, change_frequency, now)
    for group in category_groups:
        entries += _localized_entries(f"/{group['value']}", 0.8, "weekly", now)
    for product in products:
        images = [absolute_url(url) for url in (product.get("image_urls") or [])[:1000]]
        entries += _localized_entries(f"/catalog/{product['slug']}", 0.7, "weekly",
                                      product.get("created_at") or now, images)
    return entries


SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
XHTML_NS = "http://www.w3.org/1999/xhtml"
IMAGE_NS = "http://www.google.com/schemas/sitemap-image/1.1"


def sitemap_xml(entries: Iterable[dict]) -> str:
    ET.register_namespace("", SITEMAP_NS)
    ET.register_namespace("xhtml", XHTML_NS)
    ET.register_namespace("image", IMAGE_NS)
    urlset = ET.Element(f"{{{SITEMAP_NS}}}urlset")
    for entry in entries:
        url = ET.SubElement(urlset, f"{{{SITEMAP_NS}}}url")
        ET.SubElement(url, f"{{{SITEMAP_NS}}}loc").text = entry["url"]
        ET.SubElement(url, f"{{{SITEMAP_NS}}}lastmod").text = entry["last_modified"].strftime("%Y-%m-%d")
        ET.SubElement(url, f"{{{SITEMAP_NS}}}changefreq").text = entry["change_frequency"]
        ET.SubElement(url, f"{{{SITEMAP_NS}}}priority").text = f"{entry['priority']:.1f}"
        for hreflang, href in entry["alternates"].items():
            ET.SubElement(url, f"{{{XHTML_NS}}}link", rel="alternate", hreflang=hreflang, href=href)
        for image_url in entry["images"]:
            image = ET.SubElement(url, f"{{{IMAGE_NS}}}image")
            ET.SubElement(image, f"{{{IMAGE_NS}}}loc").text = image_url
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(urlset, encoding="unicode")
