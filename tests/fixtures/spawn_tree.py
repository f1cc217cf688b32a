"""Starts a sleeping grandchild, records its PID in argv[1] and sleeps."""
import subprocess
import sys
import time
from pathlib import Path

child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(120)"])
Path(sys.argv[1]).write_text(str(child.pid), encoding="utf-8")
print("tree ready", flush=True)
time.sleep(120)
