import os
import sys
import shutil
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from msrunner.supervisor.models import LaunchError, ProcessSpec

log = logging.getLogger(__name__)


#* --- Process Creation ---
def resolve_executable(executable: Path) -> Path:
    """
    Resolves the program to run and checks that it can be executed.

    A bare name (no directory part) is looked up on PATH.

    :param executable: The configured program path or name.
    :return: The absolute path of the program.
    :raises LaunchError: If the program does not exist or is not executable.
    """
    executable = Path(executable)
    if executable.parent == Path(".") and not executable.exists():
        found = shutil.which(str(executable))
        if not found:
            raise LaunchError(f"Executable '{executable}' was not found on PATH")
        return Path(found)

    if not executable.is_file():
        raise LaunchError(f"Executable not found: {executable}")
    if sys.platform != "win32" and not os.access(executable, os.X_OK):
        raise LaunchError(f"File is not executable: {executable}")
    return executable.resolve()

def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific flags so the child gets its own process group."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NO_WINDOW | subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}

def _read_pipe(pipe, process_name: str, level: int, line_handler: Optional[Callable[[str], None]] = None):
    """Target function for reader threads. Reads, logs and forwards lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip("\r\n")
            if line_handler:
                line_handler(line)
            if line.strip():
                proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()

def start_pipe_readers(process: subprocess.Popen, name: str,
                       stdout_handler: Optional[Callable[[str], None]] = None,
                       stderr_handler: Optional[Callable[[str], None]] = None) -> List[threading.Thread]:
    """Starts background threads to consume a process's stdout/stderr."""
    threads = []
    if process.stdout:
        threads.append(threading.Thread(
            target=_read_pipe, args=(process.stdout, name, logging.INFO, stdout_handler),
            daemon=True, name=f"{name}-stdout"))
    if process.stderr:
        threads.append(threading.Thread(
            target=_read_pipe, args=(process.stderr, name, logging.WARNING, stderr_handler),
            daemon=True, name=f"{name}-stderr"))
    for thread in threads:
        thread.start()
    return threads

def launch_process(spec: ProcessSpec) -> subprocess.Popen:
    """
    Starts the child process described by spec without waiting for it.

    :param spec: What to run.
    :return: The running Popen object, with stdout/stderr as pipes.
    :raises LaunchError: If the program is missing or the OS refuses to start it.
    """
    executable = resolve_executable(spec.executable)
    args = [str(executable), *[str(arg) for arg in spec.args]]
    cwd = Path(spec.working_dir) if spec.working_dir else None
    if cwd is not None and not cwd.is_dir():
        raise LaunchError(f"Working directory does not exist: {cwd}")

    env = None
    if spec.env:
        env = os.environ.copy()
        env.update({str(k): str(v) for k, v in spec.env.items()})

    log.info(f"Starting process: {spec.display_name}...")
    log.debug(f"Command line: {' '.join(args)}")
    try:
        process = subprocess.Popen(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            cwd=str(cwd) if cwd else None,
            env=env,
            **_get_popen_creation_flags()
        )
    except OSError as e:
        raise LaunchError(f"Failed to start '{spec.display_name}': {e}") from e

    log.info(f"{spec.display_name} started with PID: {process.pid}")
    return process

#* --- Process Termination ---
def _collect_descendants(pid: int) -> List[psutil.Process]:
    try:
        return psutil.Process(pid).children(recursive=True)
    except psutil.NoSuchProcess:
        return []

def _terminate_processes(processes: List[psutil.Process]) -> None:
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to PID {proc.pid}")
            proc.terminate()
        except psutil.NoSuchProcess:
            continue

def _still_running(processes: List[psutil.Process]) -> List[psutil.Process]:
    """Drops processes that are gone or are zombies waiting for a parent that is not us."""
    running = []
    for proc in processes:
        try:
            if proc.status() != psutil.STATUS_ZOMBIE:
                running.append(proc)
        except psutil.NoSuchProcess:
            continue
    return running

def _forceful_kill(processes: List[psutil.Process]) -> None:
    if not processes:
        return
    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process PID {proc.pid}.")
            proc.kill()
        except psutil.NoSuchProcess:
            continue

def terminate_process_tree(process: subprocess.Popen, timeout: float) -> bool:
    """
    Terminates a launched child and all of its descendants, escalating to kill.

    The child itself is stopped and reaped through its Popen object so that
    its exit status stays available; descendants are handled with psutil.

    :param process: The child started by launch_process.
    :param timeout: Seconds to wait after SIGTERM before killing.
    :return: True if no process of the tree is left alive.
    """
    # Collected first: once the child dies its descendants are re-parented.
    descendants = _collect_descendants(process.pid)
    log.info(f"Terminating PID {process.pid} and {len(descendants)} descendant processes...")

    _terminate_processes(descendants)
    if process.poll() is None:
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    root_alive = False
    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        log.warning(f"Killing stubborn process PID {process.pid}.")
        process.kill()
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            root_alive = True

    _, alive = psutil.wait_procs(descendants, timeout=timeout)
    alive = _still_running(alive)
    _forceful_kill(alive)
    if alive:
        _, alive = psutil.wait_procs(alive, timeout=timeout)
        alive = _still_running(alive)

    if root_alive or alive:
        log.error(f"Could not stop the process tree of PID {process.pid}; {len(alive) + int(root_alive)} processes remain.")
        return False
    return True
