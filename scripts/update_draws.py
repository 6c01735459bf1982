#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations

import argparse
import json
import math
import os
import sys
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
from bs4 import BeautifulSoup

# -----------------------------
# URLs / defaults
# -----------------------------
MIRROR_ALL_URL = "https://smok95.github.io/lotto/results/all.json"
LOTTO_API_URL = "https://www.dhlottery.co.kr/common.do?method=getLottoNumber&drwNo={drwNo}"

DEFAULT_OUT = "data/lotto_draws.json"

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 lucktoyou-bot",
    "Accept": "application/json,text/plain,*/*",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

NUMBERS_PER_DRAW = 6


class FetchError(RuntimeError):
    pass


class EmptyResultError(RuntimeError):
    pass


@dataclass
class Settings:
    out_path: str = DEFAULT_OUT
    mirror_url: str = MIRROR_ALL_URL
    official_url_template: Optional[str] = LOTTO_API_URL
    attempts: int = 5
    backoff: float = 0.6
    timeout: float = 20
    window: int = 5


def log(msg: str) -> None:
    print(f"[draws] {msg}")


def warn(msg: str) -> None:
    print(f"[draws] WARN {msg}", file=sys.stderr)


# -----------------------------
# HTTP helpers
# -----------------------------
def describe_non_json(text: str) -> str:
    head = text.strip()
    if head[:1] == "<":
        soup = BeautifulSoup(head, "html.parser")
        title = soup.title.get_text(" ", strip=True) if soup.title else ""
        if title:
            return f"Non-JSON response (HTML page '{title[:60]}')"
    return f"Non-JSON response (starts '{head[:12]}')"


def http_get_json(
    session: requests.Session,
    url: str,
    attempts: int = 5,
    backoff: float = 0.6,
    timeout: float = 20,
) -> Any:
    """
    GET url and decode JSON, retrying up to `attempts` times.
    Bodies that do not start with '{' or '[' count as failures (block pages, maintenance HTML).
    Waits backoff * (i + 1) seconds between attempts.
    """
    last: Optional[Exception] = None
    for i in range(max(1, attempts)):
        try:
            r = session.get(url, headers=DEFAULT_HEADERS, timeout=timeout)
            r.raise_for_status()
            if not 200 <= r.status_code < 300:
                raise FetchError(f"HTTP {r.status_code}")
            text = r.text
            if text.lstrip()[:1] not in ("{", "["):
                raise FetchError(describe_non_json(text))
            return json.loads(text)
        except (requests.RequestException, ValueError, RecursionError, FetchError) as e:
            last = e
            if i < attempts - 1:
                time.sleep(backoff * (i + 1))
    raise FetchError(f"HTTP JSON GET failed: {url} ({last})") from last


# -----------------------------
# Models / Normalization
# -----------------------------
@dataclass
class DrawRecord:
    drawNumber: int
    date: str
    numbers: List[int]
    bonusNumber: int


def to_int(v: Any) -> Optional[int]:
    """Finite, integral number (or numeric string) -> int. Anything else -> None."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return None
        try:
            return int(v)
        except ValueError:
            pass
    elif isinstance(v, int):
        return v
    try:
        f = float(v)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(f) or not f.is_integer():
        return None
    return int(f)


def to_yyyymmdd(value: Any) -> str:
    # mirror dates are ISO timestamps like "2020-09-19T00:00:00Z"
    if not value:
        return ""
    return str(value)[:10]


def build_record(draw_no: Any, raw_numbers: Iterable[Any], bonus: Any, date: Any) -> Optional[DrawRecord]:
    drw = to_int(draw_no)
    if drw is None or drw <= 0:
        return None

    nums = [to_int(n) for n in raw_numbers]
    if len(nums) != NUMBERS_PER_DRAW or any(n is None for n in nums):
        return None

    if bonus is None or bonus == "":
        bonus_no = 0
    else:
        bonus_no = to_int(bonus)
        if bonus_no is None:
            return None

    return DrawRecord(drawNumber=drw, date=to_yyyymmdd(date), numbers=sorted(nums), bonusNumber=bonus_no)


def normalize_mirror(item: Any) -> Optional[DrawRecord]:
    if not isinstance(item, dict):
        return None
    numbers = item.get("numbers")
    if not isinstance(numbers, list):
        return None
    return build_record(item.get("draw_no"), numbers[:NUMBERS_PER_DRAW], item.get("bonus_no"), item.get("date"))


def normalize_official(item: Any) -> Optional[DrawRecord]:
    if not isinstance(item, dict) or item.get("returnValue") != "success":
        return None
    numbers = [item.get(f"drwtNo{i}") for i in range(1, NUMBERS_PER_DRAW + 1)]
    return build_record(item.get("drwNo"), numbers, item.get("bnusNo"), item.get("drwNoDate"))


def normalize_stored(item: Any) -> Optional[DrawRecord]:
    if not isinstance(item, dict):
        return None
    if "drawNumber" in item:
        numbers = item.get("numbers")
        draw_no, bonus = item.get("drawNumber"), item.get("bonusNumber")
    else:
        # earlier file schema: {drwNo, date, nums, bonus}
        numbers = item.get("nums")
        draw_no, bonus = item.get("drwNo"), item.get("bonus")
    if not isinstance(numbers, list):
        return None
    return build_record(draw_no, numbers, bonus, item.get("date"))


NORMALIZERS: Dict[str, Callable[[Any], Optional[DrawRecord]]] = {
    "mirror": normalize_mirror,
    "official": normalize_official,
    "stored": normalize_stored,
}


def normalize(source: str, item: Any) -> Optional[DrawRecord]:
    try:
        fn = NORMALIZERS[source]
    except KeyError:
        raise ValueError(f"unknown record source: {source!r}") from None
    return fn(item)


def normalize_all(source: str, items: Iterable[Any]) -> List[DrawRecord]:
    out: List[DrawRecord] = []
    for it in items:
        rec = normalize(source, it)
        if rec is not None:
            out.append(rec)
    return out


# -----------------------------
# Merge
# -----------------------------
def merge_draws(existing: Iterable[DrawRecord], incoming: Iterable[DrawRecord]) -> List[DrawRecord]:
    """Union keyed by drawNumber; incoming wins. Result ascending by drawNumber."""
    m: Dict[int, DrawRecord] = {}
    for r in existing:
        m[r.drawNumber] = r
    for r in incoming:
        m[r.drawNumber] = r
    return [m[k] for k in sorted(m)]


def latest_draw_number(draws: Iterable[DrawRecord]) -> int:
    return max((r.drawNumber for r in draws), default=0)


def fetch_mirror(session: requests.Session, settings: Settings) -> List[DrawRecord]:
    data = http_get_json(session, settings.mirror_url, settings.attempts, settings.backoff, settings.timeout)
    if not isinstance(data, list) or not data:
        return []
    dropped = 0
    out: List[DrawRecord] = []
    for it in data:
        rec = normalize_mirror(it)
        if rec is None:
            dropped += 1
            continue
        out.append(rec)
    if dropped:
        warn(f"mirror: dropped {dropped} invalid record(s)")
    return merge_draws([], out)


def refresh_incremental(
    session: requests.Session,
    existing: List[DrawRecord],
    settings: Settings,
) -> List[DrawRecord]:
    """
    Probe the official per-draw API around the newest known draw
    (latest - window .. latest + window), one request at a time.
    Failed probes are skipped; successful ones overwrite or extend existing.
    """
    latest = latest_draw_number(existing)
    if not latest or not settings.official_url_template:
        return merge_draws(existing, [])

    start = max(1, latest - settings.window)
    end = latest + settings.window

    updates: List[DrawRecord] = []
    for drw_no in range(start, end + 1):
        url = settings.official_url_template.format(drwNo=drw_no)
        try:
            js = http_get_json(session, url, settings.attempts, settings.backoff, settings.timeout)
        except FetchError as e:
            warn(f"official drwNo={drw_no}: {e}")
            continue
        rec = normalize_official(js)
        if rec is None:
            continue
        updates.append(rec)

    return merge_draws(existing, updates)


# -----------------------------
# Storage
# -----------------------------
def load_existing(path: str) -> List[DrawRecord]:
    if not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            arr = json.load(f)
    except (OSError, ValueError, RecursionError) as e:
        warn(f"could not read {path}, treating as empty ({e})")
        return []
    if not isinstance(arr, list):
        warn(f"{path} is not a JSON array, treating as empty")
        return []

    draws = normalize_all("stored", arr)
    if len(draws) != len(arr):
        warn(f"{path}: dropped {len(arr) - len(draws)} malformed stored record(s)")
    return merge_draws([], draws)


def save_draws(path: str, draws: List[DrawRecord]) -> None:
    """Full overwrite of path. Refuses empty or malformed collections."""
    if not isinstance(draws, list) or not draws:
        raise EmptyResultError(f"refusing to write empty draw list to {path}")
    if not all(isinstance(r, DrawRecord) for r in draws):
        raise EmptyResultError(f"refusing to write malformed draw list to {path}")

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump([asdict(r) for r in draws], f, ensure_ascii=False, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


# -----------------------------
# Pipeline
# -----------------------------
@dataclass
class RunResult:
    source: str  # "mirror", "official" or "existing"
    draws: List[DrawRecord]
    previous: int


def run_pipeline(settings: Settings, session: requests.Session) -> RunResult:
    existing = load_existing(settings.out_path)
    log(f"loaded {len(existing)} existing draw(s) from {settings.out_path}")

    # 1) mirror: full history, replaces the file wholesale
    try:
        out = fetch_mirror(session, settings)
        if out:
            save_draws(settings.out_path, out)
            log(f"updated from mirror: {len(out)}")
            return RunResult("mirror", out, len(existing))
        warn("mirror returned empty")
    except FetchError as e:
        warn(f"mirror fetch failed: {str(e)[:200]}")

    # 2) fallback: keep existing, extended by a small official-API window
    out = refresh_incremental(session, existing, settings)
    if not out:
        raise EmptyResultError("no existing data and could not fetch mirror; aborting to avoid empty JSON")

    save_draws(settings.out_path, out)
    added = len(out) - len(existing)
    source = "official" if out != existing else "existing"
    log(f"kept existing data: {len(out)} (+{added} new)")
    return RunResult(source, out, len(existing))


def write_github_output(result: RunResult) -> None:
    out_path = os.environ.get("GITHUB_OUTPUT")
    if not out_path:
        return
    try:
        with open(out_path, "a", encoding="utf-8") as f:
            f.write(f"source={result.source}\n")
            f.write(f"count={len(result.draws)}\n")
            f.write(f"latest={latest_draw_number(result.draws)}\n")
    except OSError as e:
        warn(f"could not write GITHUB_OUTPUT {out_path}: {e}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh the local lotto draw dataset (never writes an empty file).")
    parser.add_argument("--out", type=str, default=os.getenv("DRAWS_OUT", DEFAULT_OUT))
    parser.add_argument("--mirror-url", type=str, default=os.getenv("DRAWS_MIRROR_URL", MIRROR_ALL_URL))
    parser.add_argument(
        "--official-url",
        type=str,
        default=os.getenv("DRAWS_OFFICIAL_URL", LOTTO_API_URL),
        help="Per-draw API template with a {drwNo} placeholder.",
    )
    parser.add_argument("--no-official", action="store_true", help="Skip the per-draw fallback when the mirror fails")
    parser.add_argument("--attempts", type=int, default=int(os.getenv("DRAWS_ATTEMPTS", "5")))
    parser.add_argument("--backoff", type=float, default=float(os.getenv("DRAWS_BACKOFF", "0.6")))
    parser.add_argument("--timeout", type=float, default=float(os.getenv("DRAWS_TIMEOUT", "20")))
    parser.add_argument("--window", type=int, default=int(os.getenv("DRAWS_WINDOW", "5")))
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = Settings(
        out_path=args.out,
        mirror_url=args.mirror_url,
        official_url_template=None if args.no_official else args.official_url,
        attempts=max(1, args.attempts),
        backoff=max(0.0, args.backoff),
        timeout=args.timeout,
        window=max(0, args.window),
    )

    try:
        with requests.Session() as session:
            result = run_pipeline(settings, session)
    except EmptyResultError as e:
        print(f"[draws] ERROR {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"[draws] ERROR could not write {settings.out_path}: {e}", file=sys.stderr)
        return 1

    write_github_output(result)
    print(f"[OK] wrote: {settings.out_path} source={result.source} count={len(result.draws)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
