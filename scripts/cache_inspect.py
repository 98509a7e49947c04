from __future__ import annotations

import sqlite3
import time

from wishlist_metadata.core.config import AppConfig


def main() -> None:
    cfg = AppConfig.load()
    print("cache db:", cfg.paths.cache_db_path)
    if not cfg.paths.cache_db_path.exists():
        print("no cache database yet")
        return

    now = time.time()
    conn = sqlite3.connect(cfg.paths.cache_db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            "SELECT COUNT(*), "
            "SUM(CASE WHEN expires_at < ? THEN 1 ELSE 0 END), "
            "COALESCE(SUM(hits),0) "
            "FROM metadata_cache",
            (now,),
        )
        total, expired, hits = cur.fetchone()
        print("entries:", {"total": total, "expired": expired or 0, "hits": hits})

        cur.execute(
            "SELECT COALESCE(json_extract(payload_json,'$.method'),''), COUNT(*) "
            "FROM metadata_cache GROUP BY 1 ORDER BY COUNT(*) DESC"
        )
        print("entries by method:")
        for r in cur.fetchall():
            print(" ", r)

        cur.execute(
            "SELECT COALESCE(json_extract(payload_json,'$.retailer'),''), COUNT(*) "
            "FROM metadata_cache GROUP BY 1 ORDER BY COUNT(*) DESC"
        )
        print("entries by retailer:")
        for r in cur.fetchall():
            print(" ", r)

        cur.execute(
            "SELECT url, hits, SUBSTR(COALESCE(json_extract(payload_json,'$.title'),''),1,60), "
            "ROUND((expires_at - ?) / 3600.0, 1) "
            "FROM metadata_cache ORDER BY hits DESC, created_at DESC LIMIT 10",
            (now,),
        )
        print("most requested (url, hits, title, hours_left):")
        for r in cur.fetchall():
            print(" ", r)

        cur.execute("SELECT url, created_at FROM metadata_cache ORDER BY created_at DESC LIMIT 10")
        print("recent:")
        for url, created_at in cur.fetchall():
            print(" ", url, time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(created_at)))
    finally:
        conn.close()


if __name__ == "__main__":
    main()
