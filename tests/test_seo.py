from datetime import datetime, timezone
import xml.etree.ElementTree as ET

import seo
from catalog import get_category_group

SITE = "https://ballon-boutique.vercel.app"


def test_canonical_urls():
    assert seo.canonical_url("/catalog", "de") == f"{SITE}/catalog"
    assert seo.canonical_url("catalog", "en") == f"{SITE}/en/catalog"
    assert seo.resolve_locale("fr") == "de"


def test_category_metadata_alternates():
    meta = seo.category_metadata("en", get_category_group("for-kids"))
    assert meta["alternates"]["canonical"] == f"{SITE}/en/for-kids"
    assert meta["alternates"]["languages"] == {
        "de-AT": f"{SITE}/for-kids",
        "en-US": f"{SITE}/en/for-kids",
        "ru-RU": f"{SITE}/ru/for-kids",
        "uk-UA": f"{SITE}/uk/for-kids",
        "x-default": f"{SITE}/for-kids",
    }
    assert meta["title"] == "For Kids | Ballon Boutique"
    assert meta["keywords"][0] == "for kids"


def test_format_price():
    assert seo.format_price(3) == "3,00 €"
    assert seo.format_price(1234.5) == "1.234,50 €"


def test_truncate_text():
    assert seo.truncate_text("short", 10) == "short"
    assert seo.truncate_text("a" * 20, 10) == "aaaaaaa..."


def test_home_endpoint(client):
    body = client.get("/api/seo/ru/home").json()
    assert body["metadata"]["alternates"]["canonical"] == f"{SITE}/ru/"
    assert body["json_ld"][0]["@type"] == "Organization"


def test_unknown_locale_falls_back(client):
    body = client.get("/api/seo/fr/catalog").json()
    assert body["metadata"]["alternates"]["canonical"] == f"{SITE}/catalog"


def test_catalog_with_category(client):
    body = client.get("/api/seo/de/catalog", params={"category_group": "love", "category": "Hearts"}).json()
    assert body["metadata"]["title"] == "Hearts - Love | Ballon Boutique"
    assert client.get("/api/seo/de/catalog", params={"category_group": "garden"}).status_code == 404


def test_category_endpoint(client):
    body = client.get("/api/seo/uk/category/baby-birth").json()
    breadcrumb = body["json_ld"][0]
    assert breadcrumb["@type"] == "BreadcrumbList"
    assert breadcrumb["itemListElement"][1]["item"] == f"{SITE}/uk/baby-birth"
    assert client.get("/api/seo/uk/category/garden").status_code == 404


def test_product_endpoint(client, make_product):
    product_id = make_product(name="Blue Heart Balloon", price=5, category_group="love")
    slug = f"blue-heart-balloon-{product_id}"

    by_slug = client.get(f"/api/seo/en/product/{slug}").json()
    by_id = client.get(f"/api/seo/en/product/{product_id}").json()
    assert by_slug == by_id

    meta = by_slug["metadata"]
    assert meta["alternates"]["canonical"] == f"{SITE}/en/catalog/{slug}"
    assert meta["other"]["product:price:amount"] == "5"
    product_ld, breadcrumb = by_slug["json_ld"]
    assert product_ld["offers"]["availability"] == "https://schema.org/InStock"
    assert "aggregateRating" not in product_ld
    assert breadcrumb["itemListElement"][-1]["name"] == "Blue Heart Balloon"


def test_product_jsonld_rating_when_sold():
    product = {"_id": "65a1b2c3d4e5f60718293a4b", "slug": "red-65a1b2c3d4e5f60718293a4b", "name": "Red",
               "price": 3, "in_stock": False, "sold_count": 12}
    doc = seo.product_jsonld(product, "de")
    assert doc["aggregateRating"]["reviewCount"] == 12
    assert doc["offers"]["availability"] == "https://schema.org/OutOfStock"


def test_legal_endpoint(client):
    meta = client.get("/api/seo/de/legal/imprint").json()["metadata"]
    assert meta["alternates"]["canonical"] == f"{SITE}/legal/imprint"
    assert client.get("/api/seo/de/legal/cookies").status_code == 404


def test_robots(client):
    res = client.get("/robots.txt")
    assert res.headers["content-type"].startswith("text/plain")
    text = res.text
    for path in ("/admin/", "/api/", "/profile/", "/cart/", "/checkout/"):
        assert f"Disallow: {path}" in text
    assert f"Sitemap: {SITE}/sitemap.xml" in text
    assert "User-agent: Googlebot" in text


def test_sitemap_entries():
    product = {"_id": "65a1b2c3d4e5f60718293a4b", "slug": "red-65a1b2c3d4e5f60718293a4b",
               "image_urls": ["/images/red.jpg"]}
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)
    entries = seo.sitemap_entries([product], [get_category_group("love")], now)
    product_entries = [e for e in entries if "/catalog/red-" in e["url"]]
    assert [e["url"] for e in product_entries] == [
        f"{SITE}/catalog/red-65a1b2c3d4e5f60718293a4b",
        f"{SITE}/en/catalog/red-65a1b2c3d4e5f60718293a4b",
        f"{SITE}/ru/catalog/red-65a1b2c3d4e5f60718293a4b",
        f"{SITE}/uk/catalog/red-65a1b2c3d4e5f60718293a4b",
    ]
    assert product_entries[0]["images"] == [f"{SITE}/images/red.jpg"]
    assert product_entries[1]["alternates"] == {
        "de-AT": f"{SITE}/catalog/red-65a1b2c3d4e5f60718293a4b",
        "en-US": f"{SITE}/en/catalog/red-65a1b2c3d4e5f60718293a4b",
        "ru-RU": f"{SITE}/ru/catalog/red-65a1b2c3d4e5f60718293a4b",
        "uk-UA": f"{SITE}/uk/catalog/red-65a1b2c3d4e5f60718293a4b",
        "x-default": f"{SITE}/catalog/red-65a1b2c3d4e5f60718293a4b",
    }


def test_sitemap_endpoint(client, make_product):
    product_id = make_product(name="Blue Heart Balloon")
    make_product(name="Hidden Balloon", in_stock=False)
    res = client.get("/sitemap.xml")
    assert res.headers["content-type"].startswith("application/xml")

    root = ET.fromstring(res.content)
    ns = {"sm": "http://www.sitemaps.org/schemas/sitemap/0.9"}
    locs = [loc.text for loc in root.findall("sm:url/sm:loc", ns)]
    assert f"{SITE}/catalog/blue-heart-balloon-{product_id}" in locs
    assert not any("hidden-balloon" in loc for loc in locs)
    assert f"{SITE}/en/for-kids" in locs
