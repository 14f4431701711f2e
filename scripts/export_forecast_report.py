from __future__ import annotations

import argparse
import json
import os
import sys

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

REPORTS = {
    "zone-summary": "get_zone_summary",
    "monthly-breakdown": "get_monthly_breakdown",
    "user-monthly-breakdown": "get_user_monthly_breakdown",
    "po-expected-month": "get_po_expected_month_breakdown",
    "product-user-zone": "get_product_user_matrix",
    "product-wise": "get_product_wise_forecast",
    "analytics": "get_forecast_analytics",
}


def load_env_file(env_path: str) -> None:
    if not os.path.exists(env_path):
        return
    with open(env_path, "r", encoding="utf-8") as env_file:
        for line in env_file:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key, value)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build a forecast report and print it as JSON.")
    parser.add_argument("report", choices=sorted(REPORTS), help="Report to build.")
    parser.add_argument(
        "--env-file",
        default=os.path.join(PROJECT_ROOT, ".env"),
        help="Path to .env file.",
    )
    parser.add_argument("--year", help="Report year (defaults to the current year).")
    parser.add_argument("--min-probability", help="Lowest offer probability to include.")
    parser.add_argument("--max-probability", help="Highest offer probability to include.")
    parser.add_argument("--zone-id", help="Restrict to one service zone.")
    parser.add_argument("--user-id", help="Restrict to one user.")
    parser.add_argument("--product-type", help="Restrict to one product type.")
    parser.add_argument(
        "--no-products",
        action="store_true",
        help="Skip per-product breakdowns in the monthly reports.",
    )
    parser.add_argument("--output", help="Write JSON to this file instead of stdout.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    load_env_file(os.path.abspath(args.env_file))

    from src.core.config import get_settings
    from src.core.logging import configure_logging
    from src.core.supabase import SupabaseClient, build_http_client
    from src.repositories.forecast_repository import ForecastRepository
    from src.schemas.forecast import ForecastFilters
    from src.services.forecast_service import ForecastService

    settings = get_settings()
    configure_logging(settings.log_level)
    filters = ForecastFilters(
        year=args.year,
        min_probability=args.min_probability,
        max_probability=args.max_probability,
        zone_id=args.zone_id,
        user_id=args.user_id,
        product_type=args.product_type,
        include_products=not args.no_products,
    )
    with build_http_client(settings) as http_client:
        repository = ForecastRepository(SupabaseClient(http_client))
        service = ForecastService(repository=repository, max_workers=settings.forecast_max_workers)
        report = getattr(service, REPORTS[args.report])(filters)

    payload = json.dumps(report.model_dump(by_alias=True), indent=2, default=str)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as output_file:
            output_file.write(payload + "\n")
        return
    print(payload)


if __name__ == "__main__":
    main()
