# port_scanner.py
import sys
import os

sys.path.append(os.path.dirname(os.path.abspath(__file__)))
from ebb_control.logging_config import setup_logging
setup_logging()

from ebb_control import EBB, EBBError, list_ports
import ebb_control.config as config

print("--- EBB Port Scanner ---")
print("This script will probe every candidate serial port for an EiBotBoard.")
show_all = "--all" in sys.argv
candidates = list_ports(all_ports=show_all)
if not candidates:
    print("No EBB-like serial ports found. Try '--all' to probe every port.")
    sys.exit()

print(f"Probing {len(candidates)} port(s) at {config.BAUD_RATE} baud...\n")

found = []
for info in candidates:
    print(f"  Probing {info.device} ({info.description})...")
    ebb = EBB(port=info.device, timeout_ms=1000)
    try:
        ebb.open()
        nickname = ebb.get_nickname()
        found.append(info.device)
        print("=" * 40)
        print(f"  SUCCESS! EBB on {info.device}")
        print(f"  Firmware: '{ebb.firmware}'")
        print(f"  Nickname: '{nickname or '(none)'}'")
        print("=" * 40)
    except EBBError as e:
        print(f"  No EBB on {info.device}: {e}")
    finally:
        ebb.close()

if found:
    print(f"\nSet EBB_SERIAL_PORT={found[0]} (or SERIAL_PORT in ebb_control/config.py) to use it.")
else:
    print("\n\nScan complete. No responding EBB found.")
