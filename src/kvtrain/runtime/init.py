"""Process environment and JAX distributed initialization.

This module reads the coordination endpoints a launcher places in the process
environment, fills in the ones a launcher may leave out (scheduler address,
Hadoop classpath), and initializes JAX's multi-process runtime.
"""

import os
import logging
import subprocess
from pathlib import Path
from typing import Optional, Dict, Any

import jax

from ..exceptions import DistributedError


logger = logging.getLogger(__name__)

WORKER_ROLE = "worker"
DEFAULT_MACHINE_LIST = "scheduler_machine_list"


def detect_distributed_env() -> Dict[str, Optional[str]]:
    """Detect distributed environment variables.

    JAX variable names take precedence, then generic launcher names, then the
    parameter-server style ``DMLC_*`` names.

    Returns:
        Dict with keys coordinator_address, coordinator_port, process_count,
        process_id (values are None when unset)
    """
    def first(*names: str) -> Optional[str]:
        for name in names:
            value = os.environ.get(name)
            if value:
                return value
        return None

    return {
        'coordinator_address': first(
            'JAX_COORDINATOR_ADDRESS', 'COORDINATOR_ADDRESS', 'DMLC_PS_ROOT_URI'
        ),
        'coordinator_port': first(
            'JAX_COORDINATOR_PORT', 'COORDINATOR_PORT', 'DMLC_PS_ROOT_PORT'
        ),
        'process_count': first('JAX_PROCESS_COUNT', 'WORLD_SIZE', 'DMLC_NUM_WORKER'),
        'process_id': first('JAX_PROCESS_ID', 'RANK', 'DMLC_WORKER_ID'),
    }


def is_distributed_env() -> bool:
    """Check if running in a distributed environment.

    Returns:
        True if coordinator address, process count and process id are all set.
    """
    env_vars = detect_distributed_env()
    required_vars = ['coordinator_address', 'process_count', 'process_id']
    return all(env_vars[var] is not None for var in required_vars)


def get_role() -> str:
    """Return this process's role ('worker', 'server' or 'scheduler')."""
    return os.environ.get('DMLC_ROLE', WORKER_ROLE).strip().lower() or WORKER_ROLE


def _hadoop_classpath() -> str:
    """Expand the Hadoop classpath; wildcards are not understood by libhdfs."""
    try:
        result = subprocess.run(
            ["hadoop", "classpath", "--glob"],
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        raise DistributedError(
            f"Failed to expand Hadoop classpath: {e}",
            "Ensure the 'hadoop' command is on PATH or export CLASSPATH yourself",
        ) from e
    return result.stdout.strip()


def init_env(use_hdfs: bool = False, machine_list: str | Path = DEFAULT_MACHINE_LIST) -> None:
    """Fill in environment variables needed before training starts.

    Args:
        use_hdfs: Set CLASSPATH from ``hadoop classpath --glob`` if it is unset
        machine_list: File holding ``<ip> <port>`` of the scheduler, read when
            DMLC_PS_ROOT_URI is not already exported

    Raises:
        DistributedError: If the classpath cannot be expanded or the machine
            list is malformed
    """
    if use_hdfs and not os.environ.get('CLASSPATH'):
        os.environ['CLASSPATH'] = _hadoop_classpath()

    if not os.environ.get('DMLC_PS_ROOT_URI'):
        path = Path(machine_list)
        if path.exists():
            fields = path.read_text(encoding="utf-8").split()
            if len(fields) < 2:
                raise DistributedError(
                    f"Malformed scheduler machine list '{path}': expected '<ip> <port>'",
                    "Write the scheduler address and port on the first line",
                )
            os.environ['DMLC_PS_ROOT_URI'] = fields[0]
            os.environ['DMLC_PS_ROOT_PORT'] = fields[1]
        else:
            logger.debug("No scheduler machine list at %s", path)

    logger.info("Env inited")


def initialize_distributed(
    coordinator_address: Optional[str] = None,
    coordinator_port: Optional[str] = None,
    process_count: Optional[int] = None,
    process_id: Optional[int] = None,
    timeout_seconds: float = 300.0
) -> None:
    """Initialize JAX distributed runtime.

    Args:
        coordinator_address: IP address of the coordinator process
        coordinator_port: Port number for coordinator (default: 1234)
        process_count: Total number of worker processes in the job
        process_id: ID of this process (0-indexed)
        timeout_seconds: Timeout for initialization

    Raises:
        DistributedError: If initialization fails
    """
    env_vars = detect_distributed_env()

    coordinator_address = coordinator_address or env_vars['coordinator_address']
    coordinator_port = coordinator_port or env_vars['coordinator_port'] or '1234'

    if process_count is None and env_vars['process_count']:
        process_count = int(env_vars['process_count'])
    if process_id is None and env_vars['process_id']:
        process_id = int(env_vars['process_id'])

    if not all([coordinator_address, process_count is not None, process_id is not None]):
        raise DistributedError(
            "Missing required distributed configuration",
            "Set JAX_COORDINATOR_ADDRESS (or DMLC_PS_ROOT_URI), JAX_PROCESS_COUNT "
            "and JAX_PROCESS_ID environment variables or pass them as arguments"
        )

    coordinator_address_with_port = f"{coordinator_address}:{coordinator_port}"

    if jax.distributed.is_initialized():
        logger.info("JAX distributed already initialized")
        return

    try:
        logger.info(f"Initializing JAX distributed: coordinator={coordinator_address_with_port}, "
                    f"process_count={process_count}, process_id={process_id}")

        jax.distributed.initialize(
            coordinator_address=coordinator_address_with_port,
            num_processes=process_count,
            process_id=process_id,
            initialization_timeout=int(timeout_seconds)
        )

        logger.info(f"JAX distributed initialized. "
                    f"Local devices: {len(jax.local_devices())}, "
                    f"Global devices: {jax.device_count()}")

    except Exception as e:
        raise DistributedError(
            f"Failed to initialize JAX distributed: {e}",
            "Check coordinator address/port, ensure all processes can reach the coordinator, "
            "and verify process_count/process_id are correct"
        ) from e


def get_device_info() -> Dict[str, Any]:
    """Get information about available devices and processes."""
    local_devices = jax.local_devices()

    local_by_type: Dict[str, int] = {}
    for device in local_devices:
        device_type = device.platform.lower()
        local_by_type[device_type] = local_by_type.get(device_type, 0) + 1

    return {
        'local_device_count': len(local_devices),
        'global_device_count': jax.device_count(),
        'local_devices_by_type': local_by_type,
        'process_count': jax.process_count(),
        'process_index': jax.process_index(),
        'is_distributed': jax.process_count() > 1,
    }


def auto_initialize() -> bool:
    """Initialize distributed JAX if the environment describes a multi-process job.

    Returns:
        True if distributed initialization was performed, False otherwise
    """
    if is_distributed_env():
        logger.info("Distributed environment detected, initializing JAX distributed")
        initialize_distributed()
        return True
    else:
        logger.info("Single-process environment detected")
        return False
