"""
Slash commands sent over WhatsApp (/help, /report, /complete, ...).

route() never raises: unknown commands, missing auth and role problems get
their own replies, and any handler failure becomes a generic error reply.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from incident_intake.repositories.base import Repositories
from incident_intake.schemas.incidents import (
    Activity,
    ActivityStatus,
    Category,
    ParsedActivityData,
    StaffRole,
    StaffUser,
    WhatsAppUser,
    utcnow,
)
from incident_intake.services.activities import ActivityService
from incident_intake.services.phone import mask_phone
from incident_intake.services.whatsapp.base import WhatsAppTransport

logger = logging.getLogger(__name__)

ALL_ROLES = (
    StaffRole.TEACHER.value,
    StaffRole.ADMIN.value,
    StaffRole.MAINTENANCE.value,
    StaffRole.SUPPORT_STAFF.value,
)

ERROR_REPLY = (
    "❌ *Error*\n\nSomething went wrong while processing your command. "
    "Please try again or contact support."
)
VERIFICATION_CODE_RE = re.compile(r"^\d{6}$")


@dataclass(frozen=True)
class CommandDefinition:
    name: str
    description: str
    requires_auth: bool
    allowed_roles: tuple = ()
    examples: tuple = field(default_factory=tuple)


COMMANDS: dict[str, CommandDefinition] = {
    cmd.name: cmd
    for cmd in (
        CommandDefinition(
            "help", "Show available commands", False, ALL_ROLES, ("/help",),
        ),
        CommandDefinition(
            "status", "Check your account status and recent activities", True, ALL_ROLES, ("/status",),
        ),
        CommandDefinition(
            "report", "Create a new incident report", True, ALL_ROLES,
            ("/report Classroom 5A Broken projector", "/report Library Leaking roof"),
        ),
        CommandDefinition(
            "myreports", "View your recent incident reports", True,
            (StaffRole.TEACHER.value, StaffRole.ADMIN.value),
            ("/myreports", "/myreports 5"),
        ),
        CommandDefinition(
            "assigned", "View incidents assigned to you", True,
            (StaffRole.MAINTENANCE.value, StaffRole.ADMIN.value),
            ("/assigned", "/assigned pending"),
        ),
        CommandDefinition(
            "complete", "Mark an incident as completed", True,
            (StaffRole.MAINTENANCE.value, StaffRole.ADMIN.value),
            ("/complete ABC123 Fixed the projector", "/complete XYZ789"),
        ),
        CommandDefinition(
            "assign", "Assign an incident to a maintenance staff member", True,
            (StaffRole.ADMIN.value,),
            ("/assign ABC123 +27821234567",),
        ),
        CommandDefinition(
            "stats", "View system statistics", True, (StaffRole.ADMIN.value,),
            ("/stats", "/stats week"),
        ),
        CommandDefinition(
            "start", "Start using the system (verify your phone number)", False, (), ("/start",),
        ),
        CommandDefinition(
            "verify", "Verify your phone number with a code", False, (), ("/verify 123456",),
        ),
    )
}


def is_command(text: Optional[str]) -> bool:
    return bool(text) and text.strip().startswith("/")


def parse_command(text: str) -> tuple[str, list[str]]:
    """'/Report Library Leaking roof' -> ('report', ['Library', 'Leaking', 'roof'])"""
    parts = text.strip().split()
    if not parts:
        return "", []
    return parts[0][1:].lower(), parts[1:]


def commands_for(role: Optional[str], is_verified: bool) -> list[CommandDefinition]:
    return [
        cmd
        for cmd in COMMANDS.values()
        if not cmd.requires_auth or (is_verified and role in cmd.allowed_roles)
    ]


@dataclass
class CommandContext:
    sender: WhatsAppUser
    linked_user: Optional[StaffUser]
    command: str
    args: list[str]
    message_id: Optional[str] = None

    @property
    def phone(self) -> str:
        return self.sender.phone_number


Handler = Callable[[CommandContext], Awaitable[None]]


class CommandRouter:
    """
    Dispatches slash commands to handlers.

    Each handler sends exactly one reply (assign also notifies the assignee).
    """

    def __init__(
        self,
        repositories: Repositories,
        transport: WhatsAppTransport,
        activities: ActivityService,
    ):
        self.repos = repositories
        self.transport = transport
        self.activities = activities
        self._handlers: dict[str, Handler] = {
            "help": self._help,
            "status": self._status,
            "report": self._report,
            "myreports": self._myreports,
            "assigned": self._assigned,
            "complete": self._complete,
            "assign": self._assign,
            "stats": self._stats,
            "start": self._start,
            "verify": self._verify,
        }

    async def _reply(self, phone: str, text: str) -> None:
        result = await self.transport.send_text(phone, text)
        if not result.success:
            logger.warning(f"[Commands] Reply to {mask_phone(phone)} failed: {result.error}")

    async def route(self, command_text: str, sender: WhatsAppUser, message_id: Optional[str] = None) -> None:
        """Parse, authorize and run one command. Never raises."""
        name, args = parse_command(command_text)
        try:
            definition = COMMANDS.get(name)
            if definition is None:
                await self._reply(
                    sender.phone_number,
                    f'❓ *Unknown Command*\n\nThe command "/{name}" is not recognized.\n\n'
                    "Use /help to see available commands.",
                )
                return

            if definition.requires_auth and not sender.is_verified:
                await self._reply(
                    sender.phone_number,
                    f'🔒 *Authentication Required*\n\nYou need to verify your account to use "/{name}".\n\n'
                    "Use /start to begin verification.",
                )
                return

            linked_user = None
            if sender.linked_user_id:
                linked_user = await self.repos.staff.get(sender.linked_user_id)

            role = linked_user.role if linked_user else "Guest"
            if definition.requires_auth and role not in definition.allowed_roles:
                await self._reply(
                    sender.phone_number,
                    f"⛔ *Permission Denied*\n\nYour role ({role}) doesn't have permission "
                    f'to use "/{name}".\n\nUse /help to see available commands.',
                )
                return

            logger.info(f"[Commands] /{name} from {mask_phone(sender.phone_number)} (role={role})")
            context = CommandContext(sender, linked_user, name, args, message_id)
            await self._handlers[name](context)

        except Exception:
            logger.exception(f"[Commands] /{name} failed for {mask_phone(sender.phone_number)}")
            try:
                await self._reply(sender.phone_number, ERROR_REPLY)
            except Exception:
                logger.exception("[Commands] Could not send error reply")

    # Handlers

    async def _help(self, ctx: CommandContext) -> None:
        role = ctx.linked_user.role if ctx.linked_user else None
        text = f"*Available Commands for {role or 'Guest'}:*\n\n"
        for cmd in commands_for(role, ctx.sender.is_verified):
            text += f"*/{cmd.name}* - {cmd.description}\n"
            if cmd.examples:
                text += f"Example: {cmd.examples[0]}\n"
            text += "\n"
        text += "_Send a photo, voice note, or location to create an incident report._"
        await self._reply(ctx.phone, text)

    async def _status(self, ctx: CommandContext) -> None:
        recent = await self.repos.activities.list_by_reporter(ctx.linked_user.id, limit=5)
        text = (
            "*Account Status*\n"
            f"Name: {ctx.linked_user.name}\n"
            f"Role: {ctx.linked_user.role}\n"
            f"Phone: {mask_phone(ctx.phone)}\n\n"
        )
        if recent:
            text += f"*Recent Reports ({len(recent)}):*\n"
            for activity in recent:
                text += f"• {activity.subcategory} - {activity.status.value}\n"
                text += f"  {activity.location} ({activity.timestamp.date().isoformat()})\n"
        else:
            text += "*No recent reports*"
        await self._reply(ctx.phone, text)

    async def _general_category(self) -> Category:
        category = await self.repos.categories.find_by_name("General")
        if category is None:
            category = await self.repos.categories.create("General", is_system=True)
        return category

    async def _report(self, ctx: CommandContext) -> None:
        if len(ctx.args) < 2:
            await self._reply(
                ctx.phone,
                "*Usage:* /report [location] [description]\n\n*Example:* /report Classroom 5A Broken projector",
            )
            return

        location = ctx.args[0]
        description = " ".join(ctx.args[1:])
        category = await self._general_category()
        activity = await self.activities.create(
            ctx.linked_user.id,
            ParsedActivityData(
                category_id=category.id,
                subcategory="Text Report",
                location=location,
                notes=description,
            ),
            status=ActivityStatus.OPEN,
            source_message_id=ctx.message_id,
        )
        await self._reply(
            ctx.phone,
            f"✅ *Report Created*\n\nReport ID: {activity.short_id}\nLocation: {location}\nStatus: Open\n\n"
            "Your report has been submitted and will be reviewed by our team.",
        )

    @staticmethod
    def _activity_block(activity: Activity, reporter: Optional[StaffUser] = None) -> str:
        text = (
            f"*{activity.subcategory}*\n"
            f"ID: {activity.short_id}\n"
            f"Location: {activity.location}\n"
            f"Status: {activity.status.value}\n"
        )
        if reporter is not None:
            text += f"Reporter: {reporter.name}\n"
        return text + f"Date: {activity.timestamp.date().isoformat()}\n\n"

    async def _myreports(self, ctx: CommandContext) -> None:
        limit = 10
        if ctx.args and ctx.args[0].isdigit():
            limit = int(ctx.args[0])
        activities = await self.repos.activities.list_by_reporter(ctx.linked_user.id, limit=min(limit, 20))

        if not activities:
            await self._reply(
                ctx.phone,
                "*No reports found*\n\nYou haven't submitted any reports yet. Use /report to create one.",
            )
            return

        text = f"*Your Recent Reports ({len(activities)}):*\n\n"
        text += "".join(self._activity_block(a) for a in activities)
        await self._reply(ctx.phone, text)

    async def _assigned(self, ctx: CommandContext) -> None:
        status = None
        status_filter = ctx.args[0].lower() if ctx.args else "all"
        if status_filter == "pending":
            status = ActivityStatus.IN_PROGRESS
        elif status_filter != "all":
            status = next(
                (s for s in ActivityStatus if s.value.lower().replace(" ", "") == status_filter.replace("_", "")),
                None,
            )

        activities = await self.repos.activities.list_by_assignee(ctx.linked_user.id, status=status, limit=15)
        if not activities:
            await self._reply(
                ctx.phone,
                "*No assigned tasks*\n\nYou don't have any assigned incidents at the moment.",
            )
            return

        text = f"*Assigned to You ({len(activities)}):*\n\n"
        for activity in activities:
            reporter = await self.repos.staff.get(activity.user_id)
            text += self._activity_block(activity, reporter or StaffUser(id="", name="Unknown"))
        await self._reply(ctx.phone, text)

    async def _complete(self, ctx: CommandContext) -> None:
        if not ctx.args:
            await self._reply(
                ctx.phone,
                "*Usage:* /complete [incident_id] [resolution_notes]\n\n"
                "*Example:* /complete ABC123 Fixed the projector",
            )
            return

        prefix = ctx.args[0]
        notes = " ".join(ctx.args[1:]) or "Completed via WhatsApp"
        activity = await self.repos.activities.find_by_prefix(prefix, assigned_to_user_id=ctx.linked_user.id)
        if activity is None:
            await self._reply(
                ctx.phone,
                f'❌ *Incident not found*\n\nNo incident found with ID starting with "{prefix}" assigned to you.',
            )
            return

        await self.activities.change_status(
            activity.id, ActivityStatus.RESOLVED, actor_id=ctx.linked_user.id, notes=notes
        )
        await self._reply(
            ctx.phone,
            f"✅ *Incident Completed*\n\nID: {activity.short_id}\nLocation: {activity.location}\n"
            f"Resolution: {notes}\n\nThank you for completing this task!",
        )

    async def _assign(self, ctx: CommandContext) -> None:
        if len(ctx.args) < 2:
            await self._reply(
                ctx.phone,
                "*Usage:* /assign [incident_id] [staff_phone]\n\n*Example:* /assign ABC123 +27821234567",
            )
            return

        prefix, staff_phone = ctx.args[0], ctx.args[1]
        activity = await self.repos.activities.find_by_prefix(prefix)
        if activity is None:
            await self._reply(
                ctx.phone,
                f'❌ *Incident not found*\n\nNo incident found with ID starting with "{prefix}".',
            )
            return

        staff = await self.repos.staff.get_by_phone(staff_phone)
        if staff is None:
            await self._reply(
                ctx.phone,
                f"❌ *Staff member not found*\n\nNo user found with phone number {staff_phone}.",
            )
            return

        await self.activities.assign(
            activity.id,
            staff.id,
            actor_id=ctx.linked_user.id,
            notify=False,
        )
        await self._reply(
            ctx.phone,
            f"✅ *Incident Assigned*\n\nID: {activity.short_id}\nAssigned to: {staff.name}\n"
            f"Location: {activity.location}",
        )
        await self._reply(
            staff.phone_number or staff_phone,
            f"🔔 *New Assignment*\n\nYou have been assigned a new incident:\n\n"
            f"ID: {activity.short_id}\nLocation: {activity.location}\n"
            f"Description: {activity.notes or 'No description'}\n\n"
            "Use /assigned to view all your tasks.",
        )

    async def _stats(self, ctx: CommandContext) -> None:
        period = ctx.args[0].lower() if ctx.args else "all"
        since = None
        if period == "week":
            since = utcnow() - timedelta(days=7)
        elif period == "month":
            since = utcnow() - timedelta(days=30)

        counts = await self.repos.activities.count_by_status(since)
        total = counts.get("total", 0)
        resolved = counts.get(ActivityStatus.RESOLVED.value, 0)
        period_text = {"week": "Last 7 Days", "month": "Last Month"}.get(period, "All Time")

        text = (
            f"*System Statistics ({period_text})*\n\n"
            f"Total Reports: {total}\n"
            f"Open: {counts.get(ActivityStatus.OPEN.value, 0)}\n"
            f"In Progress: {counts.get(ActivityStatus.IN_PROGRESS.value, 0)}\n"
            f"Resolved: {resolved}\n\n"
        )
        if total > 0:
            text += f"Resolution Rate: {round(resolved / total * 100)}%"
        await self._reply(ctx.phone, text)

    async def _start(self, ctx: CommandContext) -> None:
        if ctx.sender.is_verified:
            await self._reply(
                ctx.phone,
                "✅ *Already Verified*\n\nYour account is already verified!\n\nUse /help to see available commands.",
            )
            return

        await self._reply(
            ctx.phone,
            "👋 *Welcome to the Incident Reporting System*\n\n"
            "To get started, you need to verify your phone number.\n\n"
            "If you're a registered user, you'll be automatically linked to your account. "
            "If not, a new account will be created for you.",
        )
        await self._reply(
            ctx.phone,
            "📱 *Verification Required*\n\nPlease contact your system administrator to complete "
            "the verification process.\n\nThey will help link your WhatsApp to your account.",
        )

    async def _verify(self, ctx: CommandContext) -> None:
        if not ctx.args:
            await self._reply(ctx.phone, "*Usage:* /verify [6-digit-code]\n\n*Example:* /verify 123456")
            return

        code = ctx.args[0]
        if not VERIFICATION_CODE_RE.match(code):
            await self._reply(
                ctx.phone,
                "❌ *Invalid Code*\n\nPlease enter a 6-digit verification code.\n\n*Example:* /verify 123456",
            )
            return

        await self._reply(
            ctx.phone,
            f"🔐 *Verification Code Received*\n\nCode: {code}\n\n"
            "Please contact your administrator to complete the verification process.",
        )
