#!/usr/bin/env python3
import sys
import subprocess

def main():
    # use the current interpreter instead of hardcoding "python"
    py = sys.executable
    subprocess.check_call([py, '-m', 'lpemu.main'])
    subprocess.check_call([py, '-m', 'lpemu.summarize'])
    print("Done. See the sweep results_dir from config.yaml (CSVs and summaries).")

if __name__ == '__main__':
    main()
