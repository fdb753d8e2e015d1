import asyncio
import argparse
import json
import logging
import sys

from core.config import CrawlerConfig, load_config
from core.crawler import Crawler
from core.domain_list import parse_domain_list
from core.errors import ConfigurationError, ParseError


def _configure_logging(level: str, log_file: str = None):
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, level),
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
    )
    if level != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl virtual hosts directly against their origin IPs")
    parser.add_argument("domains", nargs="*", help="Domains to crawl: DOMAIN|URL[:IP][:PORT]")
    parser.add_argument("--domains", dest="domain_list", type=str, help="Whitespace separated list of domains (same format as positional)")
    parser.add_argument("--config", type=str, help="Path to YAML file with crawler settings")
    parser.add_argument("--threads", type=int, help="Concurrent domain fetches (default: 10)")
    parser.add_argument("--asset-threads", type=int, help="Concurrent asset fetches per domain (default: 4)")
    parser.add_argument("-r", "--assets", action="store_true", default=None, help="Also fetch css/js/images of each page")
    parser.add_argument("--ignore-remote", dest="no_remote", action="store_true", default=None, help="Skip assets and redirects pointing away from the given IPs")
    parser.add_argument("--allow-insecure", action="store_true", default=None, help="Do not verify TLS certificates")
    parser.add_argument("--delay", type=float, help="Seconds to wait before each domain is crawled")
    parser.add_argument("--timeout", type=float, help="Seconds allowed for one request including redirects (default: 10)")
    parser.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging verbosity level (default: INFO)")
    parser.add_argument("--log-file", type=str, help="Also write logs to this file")
    parser.add_argument("--urls", action="store_true", help="Print the parsed domain list and exit")
    parser.add_argument("--include-body", action="store_true", help="Include page bodies in the JSON output")
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level, args.log_file)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config) if args.config else CrawlerConfig()
        config = config.merged(
            threads=args.threads,
            asset_threads=args.asset_threads,
            assets=args.assets,
            no_remote=args.no_remote,
            allow_insecure=args.allow_insecure,
            delay=args.delay,
            timeout=args.timeout,
        ).validate()

        raw = " ".join(args.domains)
        if args.domain_list:
            raw = f"{raw} {args.domain_list}"
        domains = parse_domain_list(raw)
    except (ConfigurationError, ParseError) as e:
        logger.error(str(e))
        return 1

    if not domains:
        parser.error("at least one domain is required")

    if args.urls:
        for domain in domains:
            ip = f" ({domain.ip})" if domain.ip else ""
            print(f"{domain.url}{ip}")
        return 0

    logger.info(f"Starting crawl of {len(domains)} domains with settings {config.to_dict()}")

    async def run():
        crawler = Crawler(domains, config=config)
        results = await crawler.crawl()

        serialized = [r.to_dict(include_body=args.include_body) for r in results]
        print(json.dumps(serialized, indent=2, default=str))
        logger.info(f"{crawler.successful} successful, {crawler.failed} failed")
        return crawler

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.warning("Crawl interrupted")
        return 130

    return 0


if __name__ == "__main__":
    sys.exit(main())
