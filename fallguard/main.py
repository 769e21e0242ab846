"""
Main application for the FallGuard personal-safety monitor
Provides the interface for running the monitor and managing history and contacts
"""

import argparse
import logging
import sys
import time
import uuid

from .actuators.audio import AudioAlarm
from .actuators.controller import AlarmController
from .actuators.flashlight import FlashlightAlarm
from .actuators.vibration import VibrationAlarm
from .config import ALARM_ASSET_PATH, LOG_FILE, STORE_FILE
from .coordinator import EmergencyCoordinator
from .data.simulation import (
    SCENARIOS,
    ConsoleAudioPlayer,
    ConsoleSmsGateway,
    ConsoleTorch,
    ConsoleVibrationMotor,
    SimulatedSensorStream,
    StaticLocationProvider,
)
from .emergency_monitor import EmergencyMonitor
from .emergency_response import EmergencyResponseOrchestrator
from .errors import SensorUnavailable
from .models import EmergencyContact
from .services.location import LocationResolver
from .services.sms import SmsDispatcher
from .storage import AlertHistory, ContactBook, JsonFileConfigStore, Settings

# -------------------------------------------------------------------
# Logging configuration
# -------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class FallGuardApp:
    """
    Main application class for the FallGuard monitor
    """

    def __init__(self, store_path=STORE_FILE, silent=False, latitude=None, longitude=None, address=None,
                 siren_path=None):
        self.store = JsonFileConfigStore(store_path)
        self.history = AlertHistory(self.store)
        self.contacts = ContactBook(self.store)
        self.coordinator = EmergencyCoordinator()
        self.silent = silent
        self.siren_path = siren_path or ALARM_ASSET_PATH
        self.location_provider = StaticLocationProvider(latitude, longitude, address)
        self.monitor = None

    def build_orchestrator(self, name="foreground", countdown_seconds=None, log_file=LOG_FILE):
        settings = Settings.load(self.store)
        alarms = AlarmController(
            audio=AudioAlarm(
                asset_path=self.siren_path,
                player=ConsoleAudioPlayer() if self.silent else None,
            ),
            vibration=VibrationAlarm(ConsoleVibrationMotor()),
            flashlight=FlashlightAlarm(ConsoleTorch()),
            settings=settings,
        )
        return EmergencyResponseOrchestrator(
            coordinator=self.coordinator,
            store=self.store,
            contacts=self.contacts,
            history=self.history,
            location_resolver=LocationResolver(self.location_provider),
            sms_dispatcher=SmsDispatcher(ConsoleSmsGateway(), settings.user_name),
            alarms=alarms,
            countdown_seconds=countdown_seconds,
            log_file=log_file,
            name=name,
        )

    # -------------------------------------------------------------------
    # Run the monitor
    # -------------------------------------------------------------------
    def run_monitor(self, scenario="rest", duration=None, countdown_seconds=None):
        orchestrator = self.build_orchestrator(countdown_seconds=countdown_seconds)
        self.monitor = EmergencyMonitor(SimulatedSensorStream(scenario), self.store, orchestrator)

        if not self.contacts.enabled():
            print("⚠️  No emergency contacts configured - alerts will not be sent")
            print("   Add one with: fallguard contacts add --name NAME --phone NUMBER")

        try:
            if not self.monitor.start():
                print("Monitoring is disabled in settings")
                return
            print(f"\n[*] Monitoring simulated '{scenario}' motion...")
            print("[*] Press Ctrl+C to cancel an alert or stop\n")

            started = time.time()
            while duration is None or time.time() - started < duration:
                time.sleep(1)
                if not self.monitor.is_monitoring:
                    print("Sensor unavailable, monitoring stopped")
                    break
                if orchestrator.is_active:
                    print(f"  Sending alert in {orchestrator.countdown_remaining}s (Ctrl+C to cancel)")

        except KeyboardInterrupt:
            if orchestrator.is_active:
                print("\n[*] Cancelling emergency...")
                orchestrator.cancel(resolved_by="user")
            print("\n[*] Stopping...")
        except SensorUnavailable as e:
            logger.error(f"Error: {e}")
            raise
        finally:
            self.monitor.stop()
            orchestrator.alarms.shutdown()
            orchestrator.close()

    # -------------------------------------------------------------------
    # Alert history
    # -------------------------------------------------------------------
    def show_history(self, action="list", limit=10):
        if action == "list":
            alerts = self.history.recent(limit)
            if not alerts:
                print("No alerts recorded")
            for alert in alerts:
                print(
                    f"{alert.id}  {alert.type.description:<22} {alert.severity.value:<8} "
                    f"{alert.status.value:<10} contacts={len(alert.sent_to_contacts)}"
                )
        elif action == "stats":
            stats = self.history.statistics()
            print(f"Total alerts: {stats['total']}")
            print(f"Last week: {stats['lastWeek']}  Last month: {stats['lastMonth']}")
            for group in ("byType", "byStatus", "bySeverity"):
                counts = ", ".join(f"{k}={v}" for k, v in stats[group].items()) or "-"
                print(f"{group}: {counts}")
        elif action == "export":
            print(self.history.export_json())
        elif action == "clear":
            self.history.clear()
            print("Alert history cleared")
        else:
            raise ValueError(f"Unknown history action: {action}")

    # -------------------------------------------------------------------
    # Emergency contacts
    # -------------------------------------------------------------------
    def manage_contacts(self, action="list", name=None, phone=None, relationship=None,
                        primary=False, contact_id=None):
        if action == "list":
            contacts = self.contacts.load()
            if not contacts:
                print("No emergency contacts")
            for contact in contacts:
                flags = ("primary " if contact.is_primary else "") + ("" if contact.is_enabled else "disabled")
                print(f"{contact.id}  {contact.name:<20} {contact.phone_number:<16} {flags}".rstrip())
            return True

        if action == "add":
            contact = EmergencyContact(
                id=uuid.uuid4().hex[:8],
                name=name or "",
                phone_number=phone or "",
                relationship=relationship,
                is_primary=primary,
            )
            ok = self.contacts.add(contact)
            print(f"Added {contact.name} ({contact.id})" if ok else "Contact not added")
            return ok

        if contact_id is None:
            raise ValueError(f"contacts {action} needs --id")
        if action == "remove":
            ok = self.contacts.remove(contact_id)
        elif action in ("enable", "disable"):
            ok = self.contacts.set_enabled(contact_id, action == "enable")
        elif action == "test":
            contact = next((c for c in self.contacts.load() if c.id == contact_id), None)
            dispatcher = SmsDispatcher(ConsoleSmsGateway(), Settings.load(self.store).user_name)
            try:
                ok = contact is not None and dispatcher.send_test_message(contact)
            finally:
                dispatcher.shutdown()
        else:
            raise ValueError(f"Unknown contacts action: {action}")
        print("Done" if ok else f"No change for contact {contact_id}")
        return ok


# -------------------------------------------------------------------
# Entry point
# -------------------------------------------------------------------
def main(argv=None):
    parser = argparse.ArgumentParser(
        description="FallGuard personal-safety monitor"
    )
    parser.add_argument(
        "command",
        choices=["run", "history", "contacts"],
        help="Command to execute",
    )
    parser.add_argument(
        "action",
        nargs="?",
        default="list",
        help="history: list|stats|export|clear; contacts: list|add|remove|enable|disable|test",
    )
    parser.add_argument("--store", default=STORE_FILE, help=f"Settings file (default: {STORE_FILE})")
    parser.add_argument("--scenario", choices=SCENARIOS, default="rest", help="Simulated motion (default: rest)")
    parser.add_argument("--duration", type=float, default=None, help="Stop after N seconds")
    parser.add_argument("--countdown", type=int, default=None, help="Seconds before alerts are sent")
    parser.add_argument("--silent", action="store_true", help="Log the siren instead of playing it")
    parser.add_argument("--siren", default=None, help="Siren recording to play (synthesised when unset)")
    parser.add_argument("--lat", type=float, default=None, help="Simulated latitude")
    parser.add_argument("--lon", type=float, default=None, help="Simulated longitude")
    parser.add_argument("--limit", type=int, default=10, help="History entries to list (default: 10)")
    parser.add_argument("--name", help="Contact name")
    parser.add_argument("--phone", help="Contact phone number")
    parser.add_argument("--relationship", help="Contact relationship")
    parser.add_argument("--primary", action="store_true", help="Mark contact as primary")
    parser.add_argument("--id", dest="contact_id", help="Contact id")

    args = parser.parse_args(argv)

    app = FallGuardApp(store_path=args.store, silent=args.silent, latitude=args.lat, longitude=args.lon,
                       siren_path=args.siren)

    try:
        if args.command == "run":
            app.run_monitor(args.scenario, args.duration, args.countdown)
        elif args.command == "history":
            app.show_history(args.action, args.limit)
        elif args.command == "contacts":
            app.manage_contacts(
                args.action, args.name, args.phone, args.relationship, args.primary, args.contact_id
            )
        else:
            parser.print_help()
            sys.exit(1)
    except ValueError as e:
        parser.error(str(e))


if __name__ == "__main__":
    main()
