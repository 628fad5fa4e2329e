from typing import List, Optional
from .models import ApplicationTarget, OptimalPermission

APPLICATION_TARGETS: List[ApplicationTarget] = [
    ApplicationTarget(
        name="SharePoint",
        service_principal_name="Office 365 SharePoint Online",
        description="File storage: SharePoint Online and OneDrive sites",
        optimal_permissions=[
            OptimalPermission("Sites.Read.All", ["Read items in all site collections"]),
            OptimalPermission("Sites.Selected", ["Access selected site collections"]),
            OptimalPermission("User.Read.All", ["Read user profiles"]),
            OptimalPermission("TermStore.Read.All", ["Read managed metadata"]),
        ],
    ),
    ApplicationTarget(
        name="Teams",
        service_principal_name="Microsoft Graph",
        description="Collaboration: Microsoft Teams teams, channels and messages",
        optimal_permissions=[
            OptimalPermission("Team.ReadBasic.All", ["Get a list of all teams"]),
            OptimalPermission("Channel.ReadBasic.All", ["Read the names and descriptions of all channels"]),
            OptimalPermission("TeamMember.Read.All", ["Read the members of all teams"]),
            OptimalPermission("ChannelMessage.Read.All", ["Read all channel messages"]),
            OptimalPermission("TeamSettings.Read.All", ["Read all teams' settings"]),
        ],
    ),
    ApplicationTarget(
        name="EntraID",
        service_principal_name="Microsoft Graph",
        description="Directory: Entra ID users, groups and directory data",
        optimal_permissions=[
            OptimalPermission("User.Read.All", ["Read all users' full profiles"]),
            OptimalPermission("Group.Read.All", ["Read all groups"]),
            OptimalPermission("GroupMember.Read.All", ["Read all group memberships"]),
            OptimalPermission("Directory.Read.All", ["Read directory data"]),
            OptimalPermission("AuditLog.Read.All", ["Read all audit log data"]),
        ],
    ),
    ApplicationTarget(
        name="Exchange",
        service_principal_name="Office 365 Exchange Online",
        description="Mail: Exchange Online mailboxes",
        optimal_permissions=[
            OptimalPermission("Mail.Read", ["Read mail in all mailboxes"]),
            OptimalPermission("MailboxSettings.Read", ["Read all user mailbox settings"]),
            OptimalPermission("Calendars.Read", ["Read calendars in all mailboxes"]),
            OptimalPermission("Exchange.ManageAsApp", ["Manage Exchange As Application"]),
        ],
    ),
]


def get_target(name: str) -> Optional[ApplicationTarget]:
    wanted = (name or "").strip().lower()
    for target in APPLICATION_TARGETS:
        if target.name.lower() == wanted:
            return target
    return None
