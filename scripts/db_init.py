#!/usr/bin/env python3
"""初始化图片元数据库：按需建库，然后建 images 表。

用法: python scripts/db_init.py [--skip-database]
"""
import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pymysql
from sqlalchemy import inspect

from imgsvc.config import Settings, get_settings
from imgsvc.database import Base, engine
from imgsvc import models  # noqa: F401  注册 images 表


def ensure_mysql_database(settings: Settings) -> None:
    # 连到系统库执行建库语句，库名来自配置
    conn = pymysql.connect(
        host=settings.MYSQL_HOST,
        port=settings.MYSQL_PORT,
        user=settings.MYSQL_USER,
        password=settings.MYSQL_PASSWORD,
        database="mysql",
        charset="utf8mb4",
        autocommit=True,
        connect_timeout=settings.METADATA_QUERY_TIMEOUT,
    )
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"CREATE DATABASE IF NOT EXISTS `{settings.MYSQL_DB}` "
                "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
    finally:
        conn.close()


def ensure_tables() -> list:
    Base.metadata.create_all(bind=engine)
    return sorted(inspect(engine).get_table_names())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="初始化图片元数据库")
    parser.add_argument("--skip-database", action="store_true", help="库已存在时只建表")
    args = parser.parse_args(argv)

    settings = get_settings()
    # DATABASE_URL 指向的库由使用方自行创建
    if settings.DATABASE_URL or args.skip_database:
        print("[db-init] 跳过建库")
    else:
        print(f"[db-init] 确认数据库 {settings.MYSQL_DB} 存在")
        ensure_mysql_database(settings)

    tables = ensure_tables()
    print(f"[db-init] 当前数据表: {', '.join(tables) or '(无)'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
