"""
Synthetic transaction generator for local development of the AML velocity monitor.

Implements deterministic pseudo-random card transactions (with injected
rapid-succession bursts), CSV emission, and Postgres COPY loading. This is a
developer tool; production data arrives through the external ingestion path.
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
import time
from datetime import datetime, timedelta, timezone
from itertools import product
from pathlib import Path
from typing import Optional

import psycopg
import typer
from psycopg import sql

from aml_monitor.config import get_settings
from aml_monitor.infrastructure.db_factory import build_dsn

app = typer.Typer(help="Generate synthetic card transactions and load into Postgres (CSV + COPY).")

CSV_HEADER = [
    "trans_date_trans_time",
    "cc_num",
    "first",
    "last",
    "merchant",
    "category",
    "amt",
    "lat",
    "long",
]
FIRST_NAMES = ["Jennifer", "Michael", "Maria", "David", "Aisha", "Wei", "Carlos", "Olga"]
LAST_NAMES = ["Banks", "Garcia", "Chen", "Okafor", "Novak", "Smith", "Rossi", "Haddad"]
CATEGORIES = ["grocery_pos", "gas_transport", "shopping_net", "misc_pos", "entertainment"]


def _build_dsn(dsn_override: Optional[str]) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def _row(rng: random.Random, holder: tuple, when: datetime) -> list:
    first, last, cc_num = holder
    return [
        when.isoformat(),
        cc_num,
        first,
        last,
        f"fraud_{rng.choice(['Kirlin', 'Sporer', 'Lind', 'Haley'])}",
        rng.choice(CATEGORIES),
        f"{rng.uniform(1, 2_500):.2f}",
        f"{rng.uniform(25, 48):.4f}",
        f"{rng.uniform(-122, -70):.4f}",
    ]


def _generate_rows_csv(
    csv_path: Path,
    rows: int,
    seed: int,
    burst_every: int = 200,
    burst_size: int = 6,
    end: Optional[datetime] = None,
) -> int:
    """
    Write `rows` background transactions spread over the last day, plus one
    rapid burst of `burst_size` transactions every `burst_every` rows.

    Returns the total number of data rows written.
    """
    rng = random.Random(seed)
    end = end or datetime.now(timezone.utc)
    holders = [
        (first, last, str(4_000_000_000_000_000 + idx))
        for idx, (first, last) in enumerate(product(FIRST_NAMES, LAST_NAMES))
    ]

    written = 0
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for i in range(rows):
            holder = rng.choice(holders)
            when = end - timedelta(seconds=rng.randint(0, 86_000))
            writer.writerow(_row(rng, holder, when))
            written += 1

            if burst_every and burst_size and (i + 1) % burst_every == 0:
                holder = rng.choice(holders)
                when = end - timedelta(minutes=rng.randint(60, 1_200))
                for _ in range(burst_size):
                    writer.writerow(_row(rng, holder, when))
                    written += 1
                    when += timedelta(minutes=rng.randint(0, 4))
    return written


def _copy_into_db(dsn: str, csv_path: Path) -> None:
    table = get_settings().transactions_table
    with psycopg.connect(dsn) as conn:
        with conn.cursor() as cur:
            with cur.copy(
                sql.SQL(
                    "COPY {} (trans_date_trans_time, cc_num, first, last, merchant, "
                    "category, amt, lat, long) FROM STDIN WITH (FORMAT csv, HEADER TRUE)"
                ).format(sql.Identifier(get_settings().db_schema, table))
            ) as copy:
                with csv_path.open("r", encoding="utf-8") as f:
                    for line in f:
                        copy.write(line)
            conn.commit()


@app.command()
def main(
    rows: int = typer.Option(
        10_000,
        "--rows",
        "-r",
        help="Number of background transactions to generate.",
    ),
    burst_every: int = typer.Option(
        200,
        "--burst-every",
        help="Inject one rapid burst after every N background rows (0 disables).",
    ),
    burst_size: int = typer.Option(
        6,
        "--burst-size",
        help="Transactions per injected burst.",
    ),
    seed: int = typer.Option(
        42,
        "--seed",
        help="Deterministic RNG seed.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Optional CSV output path (if omitted, a temp file will be used).",
    ),
    dsn: Optional[str] = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip loading into Postgres.",
    ),
) -> None:
    """
    Generate synthetic transactions and optionally load them into Postgres using COPY.
    """
    start = time.perf_counter()
    if output:
        csv_path = output
        csv_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        tmpdir = Path(tempfile.mkdtemp(prefix="aml_csv_"))
        csv_path = tmpdir / "transactions.csv"

    typer.echo(f"Generating {rows:,} rows -> {csv_path} (burst every {burst_every}, seed={seed})")
    written = _generate_rows_csv(
        csv_path, rows=rows, seed=seed, burst_every=burst_every, burst_size=burst_size
    )
    typer.echo(f"CSV generation wrote {written:,} rows in {time.perf_counter() - start:.2f}s")

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    load_start = time.perf_counter()
    typer.echo("Loading CSV into Postgres via COPY...")
    _copy_into_db(_build_dsn(dsn), csv_path)
    typer.echo(f"Load completed in {time.perf_counter() - load_start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
