from playwright.sync_api import expect, sync_playwright

# Run against a live server: python -m attendance_scanner.main
BASE_URL = "http://localhost:8080/"


def verify_scan_ui():
    with sync_playwright() as p:
        browser = p.chromium.launch(headless=True, args=["--use-fake-ui-for-media-stream", "--use-fake-device-for-media-stream"])
        context = browser.new_context(permissions=["camera"])
        page = context.new_page()

        try:
            print("Navigating to scanner...")
            page.goto(BASE_URL)
            page.wait_for_load_state("networkidle")

            if page.get_by_text("Change Slot").is_visible():
                print("Resumed an existing session, skipping slot selection.")
            else:
                print("Selecting custom slot...")
                page.get_by_placeholder("e.g. Lab, Tutorial...").fill("Playwright Lab")
                page.get_by_role("button", name="Start").click()

            expect(page.get_by_text("Change Slot")).to_be_visible()
            expect(page.get_by_text("Export CSV (")).to_be_visible()

            print("Simulating offline...")
            page.evaluate("window.dispatchEvent(new Event('offline'))")
            expect(page.get_by_text("Offline Mode:")).to_be_visible()

            page.evaluate("window.dispatchEvent(new Event('online'))")
            expect(page.get_by_text("Back Online")).to_be_visible()

            page.screenshot(path="verification/verification_scan_ui.png")
            print("Screenshot saved to verification/verification_scan_ui.png")

        except Exception as e:
            print(f"Error: {e}")
            page.screenshot(path="verification/error.png")
        finally:
            browser.close()


if __name__ == "__main__":
    verify_scan_ui()
