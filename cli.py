"""
CLI entry point for the organization activity digest. Wires the pipeline: ingest -> reconcile -> score -> report
"""

import argparse
import json
import logging
import os
import sys
import traceback
import webbrowser
from typing import List, Optional
from dotenv import load_dotenv
from settings import RunConfig, load_config
from correlate.models import Report
from errors import DigestError
from pipeline import run_digest
from report.renderer import EXTENSIONS, render
from storage.retry import configure_retry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _configure_logging(level: str):
    # stdout is reserved for rendered reports and the error object
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT, stream=sys.stderr, force=True)


def _open_file_in_browser(path: str):
    """Open a file URL in the system default web browser."""
    webbrowser.open("file://" + os.path.abspath(path))


def _write_report_file(path_base: str, ext: str, content: str, open_html: bool = False) -> str:
    """Write the rendered content to a file and optionally open HTML in the browser."""
    out_path = path_base if path_base.lower().endswith(f".{ext}") else f"{path_base}.{ext}"
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    with open(out_path, 'w', encoding='utf-8') as fh:
        fh.write(content)
    logger.info("Wrote report to %s", out_path)
    if open_html:
        try:
            _open_file_in_browser(out_path)
        except webbrowser.Error:
            logger.warning("Failed to open browser automatically; file saved at %s", out_path)
    return out_path


def report_basename(report: Report, output_dir: str) -> str:
    return os.path.join(output_dir, f"activity_digest_{report.generated_at.strftime('%Y%m%dT%H%M%SZ')}")


def write_output(report: Report, config: RunConfig) -> List[str]:
    """Render every requested format and send it to stdout or to timestamped files. Returns written paths."""
    written: List[str] = []
    base = report_basename(report, config.output_dir)
    for fmt in config.formats:
        content = render(report, fmt=fmt, theme=config.html_theme, title=config.html_title)
        if config.destination == 'stdout':
            print(content)
            continue
        written.append(_write_report_file(base, EXTENSIONS[fmt], content, open_html=(fmt == 'html' and config.open_html)))
    return written


def error_payload(ex: BaseException, include_trace: bool = False) -> dict:
    error = {'type': type(ex).__name__, 'message': str(ex)}
    if include_trace:
        error['trace'] = ''.join(traceback.format_exception(type(ex), ex, ex.__traceback__))
    return {'error': error}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GitHub organization activity digest")
    parser.add_argument("--token", type=str, help="GitHub token (overrides GITHUB_TOKEN env)")
    parser.add_argument("--gemini-key", type=str, help="Gemini API key (overrides GEMINI_API_KEY env); without one scoring is local-only")
    parser.add_argument("--org", type=str, help="Organization name, or a comma separated list (overrides GITHUB_ORG_NAME env)")
    parser.add_argument("--users", type=str, help="Only report these users, comma separated (overrides SPECIFIC_USERS env)")
    parser.add_argument("--window", type=str, help="Time window such as 7.days, 12.hours, 7d, 36h or 1w (overrides FETCH_WINDOW env)")
    parser.add_argument("--backend", type=str, help="Activity backend: graphql (default) or rest (overrides USE_GRAPHQL env)")
    parser.add_argument("--no-graphql", action="store_true", help="Shortcut for --backend rest")
    parser.add_argument("--format", type=str, help="Output formats: json, markdown, html, comma separated (overrides OUTPUT_FORMAT env)")
    parser.add_argument("--destination", type=str, help="stdout (default) or file (overrides OUTPUT_DESTINATION env)")
    parser.add_argument("--output-dir", type=str, help="Directory for report files (overrides OUTPUT_DIR env, default results)")
    parser.add_argument("--model", type=str, help="Gemini model name (overrides GEMINI_MODEL env)")
    # retry/backoff knobs: optional CLI overrides. Environment variables DIGEST_MAX_RETRIES, DIGEST_BACKOFF_BASE
    # and DIGEST_MAX_BACKOFF may also be used to set defaults.
    parser.add_argument("--max-retries", type=str, help="Retries after the first attempt for HTTP requests (overrides DIGEST_MAX_RETRIES env)")
    parser.add_argument("--backoff-base", type=str, help="Backoff base; retry n waits base**n seconds plus jitter (overrides DIGEST_BACKOFF_BASE env)")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds (overrides DIGEST_MAX_BACKOFF env)")
    parser.add_argument("--max-pages", type=str, help="Page ceiling per listing (overrides DIGEST_MAX_PAGES env)")
    parser.add_argument("--detail-limit", type=str, help="Commits per user to fetch diff detail for (overrides DIGEST_DETAIL_LIMIT env)")
    parser.add_argument("--sample-size", type=str, help="Commits per user included in the scoring prompt (overrides DIGEST_SAMPLE_SIZE env)")
    parser.add_argument("--log-level", type=str, help="DEBUG, INFO, WARNING or ERROR (overrides LOG_LEVEL env)")
    parser.add_argument("--html-theme", type=str, help="default, dark or light (overrides HTML_THEME env)")
    parser.add_argument("--html-title", type=str, help="HTML page title (overrides HTML_TITLE env)")
    parser.add_argument("--thresholds", type=str, help="Path to scoring thresholds YAML (overrides DIGEST_THRESHOLDS env)")
    parser.add_argument("--open", action="store_true", help="Open the generated HTML report in the default browser")
    parser.add_argument("--verbose", action="store_true", help="Include a stack trace in error output")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    verbose = bool(args.verbose)
    try:
        config = load_config(args)
        verbose = verbose or config.log_level == 'DEBUG'
        _configure_logging(config.log_level)
        # Apply runtime retry/backoff configuration (CLI flags take precedence over environment variables)
        configure_retry(max_retries=config.max_retries, backoff_base=config.backoff_base, max_backoff=args.max_backoff)
        report = run_digest(config)
        write_output(report, config)
    except DigestError as ex:
        logger.error("Digest aborted: %s", ex)
        _print_json(error_payload(ex, include_trace=verbose))
        return 1
    except Exception as ex:
        logger.exception("Unhandled error")
        _print_json(error_payload(ex, include_trace=verbose))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
