import sys, serial, time

# ---------- EBB wire constants ----------
CR = b"\r"
QUIET_S = 0.1           # V has no terminator; the reply ends when the line goes quiet


def build_command(opcode: str, *args) -> bytes:
    return ",".join([opcode, *(str(a) for a in args)]).encode("ascii") + CR


def read_until_quiet(ser, timeout_s: float = 1.0) -> bytes:
    reply = bytearray()
    deadline = time.monotonic() + timeout_s
    last = time.monotonic()
    while time.monotonic() < deadline:
        chunk = ser.read(ser.in_waiting or 1)
        if chunk:
            reply += chunk
            last = time.monotonic()
        elif reply and time.monotonic() - last >= QUIET_S:
            break
    return bytes(reply)


def main():
    port = sys.argv[1] if len(sys.argv) > 1 else "/dev/ttyACM0"
    baud = int(sys.argv[2]) if len(sys.argv) > 2 else 115200
    frame = build_command("V")
    print(f"TX ({len(frame)} bytes):", frame)
    with serial.Serial(port, baud, timeout=0.01) as ser:
        ser.reset_input_buffer()
        ser.write(frame); ser.flush()
        print("V sent… waiting up to 1 s for reply.")
        reply = read_until_quiet(ser)
        if reply: print("RX:", reply.decode("ascii", "replace").strip())
        else:     print("No response within timeout.")
if __name__ == "__main__":
    main()
