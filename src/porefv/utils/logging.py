""" Logging functionality for porefv.

Logging is controlled by the configuration file porefv.cfg, which should be
placed in the current working directory (where the python script is initiated).
All logging-related information is located in a section in the cfg-file with
heading logging; see sample file below.

By default, timing logs are switched off. They can be turned on by setting the keyword
'active' to True.

Timing of functions that are called once per element (and once per perturbation of the
numerical Jacobian) is expensive: writing a single log message takes on the order of
1e-5 seconds. To log only parts of the code, functions are classified as relevant for
the following (overlapping) categories

    all: Used to log all methods.
    assembly: Element loops, local residuals and scattering into the global system.
    discretization: Construction of control volume geometry.
    grids: Grid construction, partitioning and load balancing.
    parallel: Ghost synchronization and gathering of distributed systems.
    numerics: Linear and nonlinear solvers, time step control.
    io: Checkpoints.

The logging keywords are commonly set on the module level.

Example logging section of porefv.cfg:

    [logging]
    # Activate logging. Without this, the rest of the section has no effect
    active: True
    # To only log specific sections, use e.g.
    sections: assembly
    # multiple sections are separated by commas:
    sections: assembly, numerics

"""
import functools
import inspect
import logging
import os
import threading
import time
from typing import Dict, Tuple

import porefv as pf

__all__ = ["time_logger", "timing_summary", "reset_timings"]


# Try to access configuration information, as activated by the import of porefv
try:
    config: Dict = pf.config["logging"]  # type: ignore
    raw_sections = config.get("sections", "all")
    active_sections = [s.strip().lower() for s in raw_sections.split(",")]
    logger_is_active = config.get("active", "false").strip().lower() == "true"
    always_log = "all" in active_sections

except KeyError:
    config = {}
    active_sections = ["all"]
    logger_is_active = False
    always_log = True

t_logger = logging.getLogger("Timer")
t_logger.setLevel(logging.INFO)


if logger_is_active and not t_logger.hasHandlers():
    # Add handler to write to file.
    time_handler = logging.FileHandler("PoreFVTimings.log")
    time_handler.setLevel(logging.INFO)
    time_formatter = logging.Formatter("%(message)s")
    time_handler.setFormatter(time_formatter)
    t_logger.addHandler(time_handler)

# Find where in the file path the directory 'porefv' is located.
# We will use this below to strip away the common parts of file names.
separator = os.sep
path_length = __file__.split(separator).index("porefv")

_totals: Dict[str, Tuple[int, float]] = {}
_totals_lock = threading.Lock()


def time_logger(sections):
    """A decorator that measures elapsed time for a function.

    Besides writing a message per call, the number of calls and the accumulated time
    are recorded per function, see :func:`timing_summary`.

    """

    # The double nested function is needed to allow decorators with arguments.
    def inner_func(func):
        @functools.wraps(func)
        def log_time(*args, **kwargs):
            if not logger_is_active:
                # Shortcut if logging is not activated.
                return func(*args, **kwargs)
            elif always_log or any([s in active_sections for s in sections]):
                # Get the name of the file, but strip away the part above
                # '/src/porefv'
                fn = separator.join(
                    inspect.getfile(func).split(separator)[path_length + 1 :]
                )
                name = f"{func.__qualname__} in file {fn}."

                t_logger.log(level=logging.INFO, msg=f"Calling {name}")

                start_time = time.perf_counter()
                try:
                    return func(*args, **kwargs)
                finally:
                    run_time = time.perf_counter() - start_time
                    _record(f"{func.__module__}.{func.__qualname__}", run_time)
                    t_logger.log(
                        level=logging.INFO,
                        msg=f"Finished {name} Elapsed time: {run_time:.8f} s",
                    )
            else:
                return func(*args, **kwargs)

        return log_time

    return inner_func


def _record(name: str, run_time: float) -> None:
    # Assembly threads time their calls concurrently.
    with _totals_lock:
        calls, total = _totals.get(name, (0, 0.0))
        _totals[name] = (calls + 1, total + run_time)


def timing_summary() -> Dict[str, Tuple[int, float]]:
    """Number of calls and accumulated time in seconds of every timed function,
    since the start of the process or the last :func:`reset_timings`."""
    with _totals_lock:
        return dict(_totals)


def reset_timings() -> None:
    with _totals_lock:
        _totals.clear()
