# analysis/power_profile.py

import sys
import os
import time
from datetime import datetime
import pandas as pd
import numpy as np
import plotly.graph_objects as go
from plotly.subplots import make_subplots

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ebb_control import EBB, EBBError, StepMode
import ebb_control.config as config
from ebb_control.logging_config import setup_logging

# --- Test Configuration ---
MOVE_DURATION_MS = 4000
MOVE_STEPS = (8000, -8000)     # 2000 steps/s per axis, well under the 25 kHz limit
SAMPLE_INTERVAL = 0.05
SETTLE_TIME = 0.5               # seconds sampled before and after the move
ROLLING_WINDOW = 5

setup_logging()

print("--- Test: Motor Supply & Current Profile ---")
print(f"This test runs a {MOVE_DURATION_MS} ms move and samples QC/QM every {SAMPLE_INTERVAL * 1000:.0f} ms.")
response = input("The carriage will move. Ensure the machine is clear. Proceed? (yes/no): ")
if response.lower() != 'yes':
    print("Test aborted.")
    sys.exit()

# --- Data Collection ---
samples = []
try:
    with EBB(port=config.SERIAL_PORT, baud=config.BAUD_RATE) as ebb:
        print(f"Connected: {ebb.firmware}")
        ebb.enable_motors(StepMode.DIV16, StepMode.DIV16)
        ebb.clear_step_position()

        start_time = time.time()
        moving_started = False

        def sample(phase):
            try:
                current = ebb.get_current_info()
                status = ebb.get_motor_status()
                samples.append({
                    'time_s': time.time() - start_time,
                    'phase': phase,
                    'supply_V': current.power_voltage,
                    'current_limit_A': current.max_current,
                    'motor1_moving': status.motor1_moving,
                    'motor2_moving': status.motor2_moving,
                })
                return status
            except EBBError as e:
                print(f"Warning: Comm error during sample: {e}")
                return None

        # Baseline before the move
        while time.time() - start_time < SETTLE_TIME:
            sample('idle_before')
            time.sleep(SAMPLE_INTERVAL)

        ebb.move_stepper_steps(MOVE_DURATION_MS, *MOVE_STEPS)
        while True:
            status = sample('moving')
            if status is not None and not (status.command_executing or status.motor1_moving or status.motor2_moving):
                break
            if time.time() - start_time > SETTLE_TIME + MOVE_DURATION_MS / 1000 + 5.0:
                print("Move did not finish in time; stopping.")
                ebb.emergency_stop()
                break
            time.sleep(SAMPLE_INTERVAL)

        settle_start = time.time()
        while time.time() - settle_start < SETTLE_TIME:
            sample('idle_after')
            time.sleep(SAMPLE_INTERVAL)

        print(f"\nFinal position: {ebb.get_step_positions()}")
        print("--- Sampling complete. Returning home. ---")
        ebb.move_home(2000)

except Exception as e:
    print(f"\nFATAL ERROR: Test failed with an unhandled exception: {e}")
else:
    print("\nSUCCESS! Data collection finished.")

# --- Data Processing and Saving ---
if not samples:
    print("No data was collected. Exiting.")
    sys.exit()

df = pd.DataFrame(samples)
# Upper bound on motor power: supply voltage times the driver current limit
df['power_limit_W'] = df['supply_V'] * df['current_limit_A']
df['supply_V_rolling'] = df['supply_V'].rolling(ROLLING_WINDOW, min_periods=1).mean()

for phase, group in df.groupby('phase'):
    print(f"{phase:>12}: supply {group['supply_V'].mean():.2f} V "
          f"(std {np.std(group['supply_V']):.3f}), limit {group['current_limit_A'].mean():.3f} A")

sag = df.loc[df['phase'] == 'idle_before', 'supply_V'].mean() - df.loc[df['phase'] == 'moving', 'supply_V'].min()
if not np.isnan(sag):
    print(f"Supply sag under load: {sag:.3f} V")

timestamp_str = datetime.now().strftime("%Y%m%d_%H%M%S")
csv_filename = f"power_profile_{timestamp_str}.csv"
html_plot_filename = f"power_profile_{timestamp_str}.html"

df.to_csv(csv_filename, index=False)
print(f"\nData saved to '{csv_filename}'")

# --- Plotting ---
print("Generating power profile plot...")
fig = make_subplots(rows=2, cols=1, shared_xaxes=True, vertical_spacing=0.08,
                    subplot_titles=('Motor Supply Voltage', 'Motion State'))

fig.add_trace(go.Scatter(x=df['time_s'], y=df['supply_V'], mode='markers',
                         name='Supply (V)', marker=dict(size=5, color='blue')), row=1, col=1)
fig.add_trace(go.Scatter(x=df['time_s'], y=df['supply_V_rolling'], mode='lines',
                         name=f'Rolling mean ({ROLLING_WINDOW})', line=dict(color='red')), row=1, col=1)
fig.add_trace(go.Scatter(x=df['time_s'], y=df['motor1_moving'].astype(int), mode='lines',
                         name='Motor 1 moving', line=dict(shape='hv')), row=2, col=1)
fig.add_trace(go.Scatter(x=df['time_s'], y=df['motor2_moving'].astype(int), mode='lines',
                         name='Motor 2 moving', line=dict(shape='hv', dash='dash')), row=2, col=1)

fig.update_layout(
    title_text='EBB Motor Supply During a Move',
    height=800,
    template='plotly_white',
    legend=dict(x=0.01, y=0.98)
)
fig.update_xaxes(title_text='Time (s)', row=2, col=1)
fig.update_yaxes(title_text='Volts', row=1, col=1)
fig.update_yaxes(title_text='Moving', row=2, col=1)

fig.write_html(html_plot_filename)
print(f"Interactive plot saved to '{html_plot_filename}'")
fig.show()
