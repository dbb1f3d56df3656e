"""Cache of package and version enrichment data kept in the database."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any, Optional

from .database import Database
from .models import CachedPackage, CachedVersion


def _rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.astimezone()
    text = moment.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _parse_rfc3339(text: Any) -> Optional[datetime]:
    if not text:
        return None
    value = str(text)
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _now() -> datetime:
    return datetime.now().astimezone()


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def get_cached_packages(
    db: Database, purls: Sequence[str], stale_after: timedelta
) -> dict[str, CachedPackage]:
    """Return cached packages for purls enriched within stale_after, keyed by purl."""
    if not purls:
        return {}
    threshold = _rfc3339(_now() - stale_after)
    placeholders = ",".join("?" for _ in purls)
    rows = db.query_all(
        "SELECT purl, ecosystem, name, latest_version, license, enriched_at"
        " FROM packages"
        f" WHERE enriched_at >= ? AND purl IN ({placeholders})",
        threshold,
        *purls,
    )
    result: dict[str, CachedPackage] = {}
    for row in rows:
        package = CachedPackage(
            purl=row["purl"],
            ecosystem=row["ecosystem"],
            name=row["name"],
            latest_version=_text(row["latest_version"]),
            license=_text(row["license"]),
            enriched_at=_parse_rfc3339(row["enriched_at"]),
        )
        result[package.purl] = package
    return result


def save_package_enrichment(
    db: Database,
    purl: str,
    ecosystem: str,
    name: str,
    latest_version: str,
    license: str,
) -> None:
    """Store or refresh enrichment data for one package."""
    now = _rfc3339(_now())
    db.execute(
        """
        INSERT INTO packages (purl, ecosystem, name, latest_version, license,
                              enriched_at, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(purl) DO UPDATE SET
            latest_version = excluded.latest_version,
            license = excluded.license,
            enriched_at = excluded.enriched_at,
            updated_at = excluded.updated_at
        """,
        purl,
        ecosystem,
        name,
        latest_version,
        license,
        now,
        now,
        now,
    )


def get_cached_versions(
    db: Database, package_purl: str, stale_after: timedelta
) -> list[CachedVersion]:
    """Return fresh cached versions of a package, newest publication first."""
    threshold = _rfc3339(_now() - stale_after)
    rows = db.query_all(
        """
        SELECT purl, package_purl, license, published_at
        FROM versions
        WHERE package_purl = ? AND enriched_at >= ?
        ORDER BY published_at DESC
        """,
        package_purl,
        threshold,
    )
    return [
        CachedVersion(
            purl=row["purl"],
            package_purl=row["package_purl"],
            license=_text(row["license"]),
            published_at=_parse_rfc3339(row["published_at"]),
        )
        for row in rows
    ]


def save_versions(db: Database, versions: Sequence[CachedVersion]) -> None:
    """Store or refresh several versions in one transaction."""
    if not versions:
        return
    now = _rfc3339(_now())
    with db.transaction():
        for version in versions:
            published = "" if version.published_at is None else _rfc3339(version.published_at)
            db.execute(
                """
                INSERT INTO versions (purl, package_purl, license, published_at,
                                      enriched_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(purl) DO UPDATE SET
                    license = excluded.license,
                    published_at = excluded.published_at,
                    enriched_at = excluded.enriched_at,
                    updated_at = excluded.updated_at
                """,
                version.purl,
                version.package_purl,
                version.license,
                published,
                now,
                now,
                now,
            )