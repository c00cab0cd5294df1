#!/usr/bin/env python
"""자동화 단독 실행 스크립트 (API 서버 없이)

사용법:
    python run_worker.py full --category 여성의류 --limit 20
    python run_worker.py full --workers 5
    python run_worker.py filter --filters 신상품 베스트 --username admin --password ****
"""

import argparse
import asyncio
import sys

from dotenv import load_dotenv


async def run(args: argparse.Namespace) -> int:
    from app.tasks.errors import ConfigurationError
    from app.tasks.factory import build_queue_manager
    from app.tasks.models import FilterCredentials, ScrapingSettings, TaskKind

    manager = build_queue_manager()
    manager.set_max_concurrent_workers(args.workers)
    await manager.start()
    try:
        if args.command == "full":
            scraping = ScrapingSettings(url=args.url, category=args.category, limit=args.limit)
            try:
                task = await manager.start_full_automation(args.owner, scraping)
            except ConfigurationError as e:
                print(f"Invalid configuration: {e}")
                return 1
        else:
            credentials = FilterCredentials(username=args.username, password=args.password)
            try:
                await manager.validate_filtered_automation(args.owner, args.filters, credentials)
            except ConfigurationError as e:
                print(f"Invalid configuration: {e}")
                return 1
            task = await manager.create_task(
                args.owner,
                TaskKind.FILTERED_AUTOMATION,
                f"Filter automation: {', '.join(args.filters)}",
                {"filters": args.filters},
            )
            manager.run_in_background(
                manager.start_filtered_automation(task.task_id, args.owner, args.filters, credentials)
            )

        print(f"Task {task.task_id} started")
        await manager.wait_idle()

        final = await manager.get_task(task.task_id)
        print(
            f"Task {final.task_id}: {final.status.value} "
            f"({final.processed_items}/{final.total_items} processed, {final.failed_items} failed)"
        )
        return 0 if final.status.value == "completed" else 1
    finally:
        await manager.stop()


def main():
    load_dotenv()

    from app.config import configure_logging

    configure_logging()

    parser = argparse.ArgumentParser(description="Image Automation Runner")
    parser.add_argument("--owner", default="admin", help="작업 소유자 (기본: admin)")
    parser.add_argument("--workers", type=int, default=3, help="동시 처리 워커 수 (1~10)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    full = subparsers.add_parser("full", help="완전 자동화 (수집 → 배경 제거 → 저장)")
    full.add_argument("--url", default="https://www.mango.com/kr")
    full.add_argument("--category", default="여성의류")
    full.add_argument("--limit", type=int, default=50)

    flt = subparsers.add_parser("filter", help="관리자 필터 자동화")
    flt.add_argument("--filters", nargs="+", required=True, help="처리할 필터 이름")
    flt.add_argument("--username", required=True)
    flt.add_argument("--password", required=True)

    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nAutomation stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
