#!/usr/bin/env python3
"""Utility script to check JavaScript syntax of the injected page script."""

import os
import subprocess
import sys
import tempfile


def check_js_syntax(script_name: str, script_content: str) -> bool:
    """Check JavaScript syntax using Node.js.
    
    Args:
        script_name: Name for error reporting
        script_content: JavaScript code to check
        
    Returns:
        True if syntax is valid, False otherwise
    """
    # Wrap in function to avoid runtime errors from browser APIs
    wrapped = f"function __check__() {{ {script_content} }}"
    
    with tempfile.NamedTemporaryFile(mode='w', suffix='.js', delete=False) as f:
        f.write(wrapped)
        tmpfile = f.name
    
    try:
        result = subprocess.run(
            ['node', '--check', tmpfile],
            capture_output=True,
            text=True
        )
        if result.returncode == 0:
            print(f"OK    {script_name}")
            return True
        print(f"ERROR {script_name}")
        print(result.stderr)
        return False
    finally:
        os.unlink(tmpfile)


def main():
    from playback_control.page_script import (
        get_arm_click_call,
        get_disarm_click_call,
        get_page_script,
    )
    
    print("Checking JavaScript syntax in page_script.py...\n")
    
    all_ok = True
    all_ok &= check_js_syntax("PAGE_SCRIPT", get_page_script())
    all_ok &= check_js_syntax("arm click call", get_arm_click_call())
    all_ok &= check_js_syntax("disarm click call", get_disarm_click_call())
    
    print()
    if all_ok:
        print("All JavaScript syntax checks passed!")
        sys.exit(0)
    else:
        print("Some JavaScript syntax checks failed!")
        sys.exit(1)


if __name__ == "__main__":
    main()
