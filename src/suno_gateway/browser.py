#!/usr/bin/env python3
""" Playwright browser engine backends used for captcha solving """

from typing import Dict, Final, List, Protocol

from playwright.sync_api import Browser, BrowserContext, Playwright

# Public API - functions and classes that external scripts should use
__all__ = [
    'BrowserBackend',
    'ChromiumBackend',
    'FirefoxBackend',
    'select_backend'
]

CHROMIUM_ARGS: Final[List[str]] = [
    "--disable-blink-features=AutomationControlled",
    "--disable-web-security",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-features=site-per-process",
    "--disable-features=IsolateOrigins",
    "--disable-extensions",
    "--disable-infobars",
]
CHROMIUM_NO_GPU_ARGS: Final[List[str]] = [
    "--enable-unsafe-swiftshader",
    "--disable-gpu",
    "--disable-setuid-sandbox",
]


class BrowserBackend(Protocol):
    """ The two operations the challenge resolver needs from a browser engine family """
    name: str

    def default_args(self) -> List[str]:
        ...

    def launch(self, playwright: Playwright, args: List[str], headless: bool) -> Browser:
        ...

    def new_context(self, browser: Browser, user_agent: str, locale: str) -> BrowserContext:
        ...


class ChromiumBackend:
    """ Chromium with automation markers switched off """
    name = "chromium"

    def __init__(self, disable_gpu: bool = False):
        self.disable_gpu = disable_gpu

    def default_args(self) -> List[str]:
        args = list(CHROMIUM_ARGS)
        if self.disable_gpu:
            args.extend(CHROMIUM_NO_GPU_ARGS)
        return args

    def launch(self, playwright: Playwright, args: List[str], headless: bool) -> Browser:
        return playwright.chromium.launch(args=args, headless=headless)

    def new_context(self, browser: Browser, user_agent: str, locale: str) -> BrowserContext:
        return browser.new_context(user_agent=user_agent, locale=locale, no_viewport=True)


class FirefoxBackend:
    """ Firefox; GPU and webdriver switches are preferences rather than command line flags """
    name = "firefox"

    def __init__(self, disable_gpu: bool = False):
        self.disable_gpu = disable_gpu

    def default_args(self) -> List[str]:
        return []

    def launch(self, playwright: Playwright, args: List[str], headless: bool) -> Browser:
        prefs: Dict[str, object] = {"dom.webdriver.enabled": False}
        if self.disable_gpu:
            prefs["layers.acceleration.disabled"] = True
            prefs["webgl.disabled"] = True
        return playwright.firefox.launch(args=args, headless=headless, firefox_user_prefs=prefs)

    def new_context(self, browser: Browser, user_agent: str, locale: str) -> BrowserContext:
        return browser.new_context(user_agent=user_agent, locale=locale, no_viewport=True)


_BACKENDS: Final[Dict[str, type]] = {
    ChromiumBackend.name: ChromiumBackend,
    FirefoxBackend.name: FirefoxBackend,
}


def select_backend(name: str, disable_gpu: bool = False) -> BrowserBackend:
    """ Instantiate the backend for an engine family name """
    try:
        return _BACKENDS[name.lower()](disable_gpu=disable_gpu)
    except KeyError:
        raise ValueError(f"Unknown browser engine '{name}', expected one of: {', '.join(_BACKENDS)}") from None
