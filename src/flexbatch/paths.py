"""Path resolution for config and data files.

  Dev:        ./flexbatch.toml            -> ./data/flexbatch.db
  Production: /etc/flexbatch/flexbatch.toml -> /var/lib/flexbatch/flexbatch.db
"""

import os

ETC_DIR = "/etc/flexbatch"
VAR_DIR = "/var/lib/flexbatch"


def resolve_config(name: str) -> str:
    """Resolve a config file name to an absolute path.

    A *name* containing ``/`` is an explicit path.  A bare filename is
    looked up in the current directory, then in ``/etc/flexbatch/``.

    Raises:
        FileNotFoundError: If the file cannot be found.
    """
    if "/" in name:
        candidates = [name]
    else:
        candidates = [name, os.path.join(ETC_DIR, name)]

    for candidate in candidates:
        if os.path.isfile(candidate):
            return os.path.abspath(candidate)

    raise FileNotFoundError(
        "config file not found: %s" % " or ".join(candidates)
    )


def resolve_db(config_path: str, db_name: str) -> str:
    """Place the database next to the config, or under /var/lib in production.

    An absolute *db_name* is returned unchanged.
    """
    if os.path.isabs(db_name):
        return db_name
    config_dir = os.path.dirname(config_path)
    if config_dir.startswith(ETC_DIR):
        return os.path.join(VAR_DIR, db_name)
    return os.path.join(config_dir, "data", db_name)
