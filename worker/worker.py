"""
Worker entrypoint. Run with:
    celery -A celery_app worker -Q media -l info
    celery -A celery_app beat -l info        # hourly orphan sweep
"""
import logging

from celery_app import app

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.worker_main(["worker", "-Q", "media,default", "-l", "info"])
