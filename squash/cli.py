from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from .config import Config, load_config
from .errors import ConfigError
from .har_loader import HarRequestStore
from .http_client import HttpClient
from .models import MinimizeResult
from .orchestrator import MinimizationOrchestrator
from .reporting import HarExporter, ReplayWorkspace, ReportWriter


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HTTP 请求最小化命令行工具")
    parser.add_argument("--config", default="config.yaml", help="配置文件路径")
    parser.add_argument("--input-har", dest="input_har", help="覆盖配置中的 HAR 输入路径")
    parser.add_argument("--output-har", dest="output_har", help="覆盖配置中的 HAR 输出路径")
    parser.add_argument("--report", dest="report_path", help="覆盖配置中的报告输出路径")
    parser.add_argument(
        "--request-id",
        dest="request_ids",
        action="append",
        default=[],
        help="要最小化的 HAR 条目下标，可重复；缺省处理全部条目",
    )
    parser.add_argument("--log-level", default="INFO", help="日志级别")
    return parser


def run(config: Config, request_ids: Optional[List[str]] = None) -> List[MinimizeResult]:
    if not config.input_har:
        raise ConfigError("未指定 HAR 输入路径")
    store = HarRequestStore.from_file(config.input_har)
    client = HttpClient(config.client, timeout=config.minimization.timeout)
    workspace = ReplayWorkspace()
    orchestrator = MinimizationOrchestrator(store, client, workspace, config.minimization)
    results: List[MinimizeResult] = []
    try:
        for request_id in request_ids or store.ids():
            result = orchestrator.minimize_request(request_id)
            logger.info("请求 %s：%s，%s", request_id, result.kind, result.message)
            results.append(result)
    finally:
        client.close()
    if config.output_har:
        exporter = HarExporter()
        exporter.add_results(results)
        exporter.add_history(client.history)
        exporter.write(config.output_har)
    if config.report_path:
        ReportWriter(config.report_path).write(results)
    return results


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO), format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    overrides: Dict[str, Any] = {}
    if args.input_har:
        overrides["input_har"] = args.input_har
    if args.output_har:
        overrides["output_har"] = args.output_har
    if args.report_path:
        overrides["report_path"] = args.report_path
    try:
        config = load_config(args.config, overrides=overrides)
        results = run(config, args.request_ids)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 2
    return 0 if all(result.ok for result in results) else 1


if __name__ == "__main__":
    sys.exit(main())
