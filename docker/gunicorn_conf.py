# Gunicorn configuration for bucketkeeper
# Only one worker may own the purge scheduler, otherwise every worker
# would run the daily purge against the same buckets.

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('BIND', '0.0.0.0:5000')
workers = int(os.environ.get('WEB_CONCURRENCY', 2))
# Purge previews list every filesource of every installation
timeout = int(os.environ.get('GUNICORN_TIMEOUT', 120))
wsgi_app = 'bucketkeeper:create_app()'


def post_fork(server, worker):
    """
    Mark the first worker spawned as the scheduler owner.

    Runs before the worker loads the app; create_app() reads
    SCHEDULER_WORKER and only starts APScheduler when it is 'true'.
    """
    # Arbiter ages start at 1 and grow with every spawn
    owner = worker.age == 1
    os.environ['SCHEDULER_WORKER'] = 'true' if owner else 'false'
    role = 'purge scheduler owner' if owner else 'HTTP only'
    logger.info(f"Worker PID {worker.pid} (age={worker.age}): {role}")
