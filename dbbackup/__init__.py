"""dbbackup - MySQL backup orchestration for cron jobs and CI pipelines.

dbbackup dumps a MySQL/MariaDB database with ``mysqldump``, streams the dump
into a timestamped ``.sql`` file, verifies the result, prunes old artifacts
and reports the outcome through the process exit code.

Usage:
    backup run --db mydatabase --out backups --keep 7
    backup list --db mydatabase --out backups
    backup prune --db mydatabase --out backups --keep 3
    backup history

Connection parameters come from MYSQL_HOST, MYSQL_PORT, MYSQL_USER,
MYSQL_PASSWORD, MYSQL_DATABASE and BACKUP_DIR (a local .env file is also read).
"""

__version__ = "0.1.0"
