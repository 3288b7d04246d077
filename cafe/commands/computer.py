from cafe import registry, storage
from cafe.computers import UsageStatus
from cafe.misc import Auth, Utilities
from resources.constants import CURRENCY, OPERATION_TIMEOUT_SECONDS

STATUS_ICONS = {
    UsageStatus.AVAILABLE: "🟢",
    UsageStatus.IN_USE: "🔴",
    UsageStatus.MAINTENANCE: "🛠️",
}


class ComputerRoutes:
    """
    Routes for the computer inventory.
    """

    @staticmethod
    def _find(name):
        return storage.query_object("Computer", name=name)

    # /add_pc command
    @Auth.authorized_user
    @Auth.replies_errors
    async def add_computer(self, event):
        """
        Register a computer.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split(maxsplit=4)
        if len(args) < 4:
            await event.respond(
                "❓ Usage: /add_pc <name> <ip_address> <hourly_rate> [location]\n"
                "For example: `/add_pc PC-01 10.0.0.11 10000 Ground floor`"
            )
            return

        computer = registry.register_computer(
            args[1],
            args[2],
            args[3],
            location=args[4] if len(args) > 4 else "",
            actor_id=Auth.actor(event),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )
        await event.respond(
            f"✅ Computer `{computer.name}` added.\n"
            f"🌐 **IP:** `{computer.ip_address}`\n"
            f"🏷️ **Rate:** `{Utilities.format_money(computer.hourly_rate, CURRENCY)}` / hour"
        )

    # /pcs command
    @Auth.authorized_user
    @Auth.replies_errors
    async def list_computers(self, event):
        """
        List the computers, optionally only those in one status.
        :param event: Event object.
        :return: None
        """

        args = event.message.text.split()
        if len(args) > 1:
            computers = registry.get_computers_by_status(args[1])
        else:
            computers = registry.list_computers()
        if not computers:
            await event.respond("❌ No computers found.")
            return

        response = "🖥️ **Computers:**\n\n"
        response += "\n".join(
            f"{STATUS_ICONS[c.status]} `{c.name}` ({c.ip_address}) "
            f"{Utilities.format_money(c.hourly_rate, CURRENCY)}/h {c.status}"
            for c in computers
        )
        await event.respond(response)

    # /pc_status command
    @Auth.authorized_user
    @Auth.replies_errors
    async def set_status(self, event):
        args = event.message.text.split()
        if len(args) < 3:
            await event.respond(
                "❓ Usage: /pc_status <name> <status>\n"
                f"Statuses: {UsageStatus.AVAILABLE}, {UsageStatus.MAINTENANCE}"
            )
            return

        computer = self._find(args[1])
        if not computer:
            await event.respond(f"❌ Computer `{args[1]}` not found.")
            return
        view = registry.update_status(
            computer.id,
            args[2],
            actor_id=Auth.actor(event),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )
        await event.respond(f"{STATUS_ICONS[view.status]} `{view.name}` is now {view.status}.")

    # /maintenance command
    @Auth.authorized_user
    @Auth.replies_errors
    async def maintenance(self, event):
        args = event.message.text.split(maxsplit=2)
        if len(args) < 2:
            await event.respond("❓ Usage: /maintenance <name> [reason]")
            return

        computer = self._find(args[1])
        if not computer:
            await event.respond(f"❌ Computer `{args[1]}` not found.")
            return
        view = registry.set_maintenance(
            computer.id,
            args[2] if len(args) > 2 else None,
            actor_id=Auth.actor(event),
            timeout=OPERATION_TIMEOUT_SECONDS,
        )
        await event.respond(f"🛠️ `{view.name}` is now in maintenance.")

    # /remove_pc command
    @Auth.authorized_user
    @Auth.replies_errors
    async def remove_computer(self, event):
        args = event.message.text.split()
        if len(args) < 2:
            await event.respond("❓ Usage: /remove_pc <name>")
            return

        computer = self._find(args[1])
        if not computer:
            await event.respond(f"❌ Computer `{args[1]}` not found.")
            return
        registry.remove_computer(
            computer.id, actor_id=Auth.actor(event), timeout=OPERATION_TIMEOUT_SECONDS
        )
        await event.respond(f"🗑️ Computer `{args[1]}` removed.")
