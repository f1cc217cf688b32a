"""Prints each argument after the exit code as a line, then exits with that code.

A line starting with 'stderr:' goes to stderr; 'sleep:<seconds>' pauses.
"""
import sys
import time

exit_code = int(sys.argv[1])
for arg in sys.argv[2:]:
    if arg.startswith("sleep:"):
        time.sleep(float(arg.split(":", 1)[1]))
    elif arg.startswith("stderr:"):
        print(arg.split(":", 1)[1], file=sys.stderr, flush=True)
    else:
        print(arg, flush=True)
sys.exit(exit_code)
