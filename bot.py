#!/usr/bin/env python3
"""
CTF Notify Bot - Entry Point

Telegram bot for CTFtime start reminders and CTFd solve tracking.
The actual implementation is in the ctfbot package.
"""

if __name__ == "__main__":
    from ctfbot import main
    main()
