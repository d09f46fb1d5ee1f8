import logging
import os
import platform
import stat

logger = logging.getLogger(__name__)

if platform.system() == "Windows":
    try:
        import win32api
        import win32con
        import win32file
        import win32security
        WINDOWS_SECURITY_AVAILABLE = True
    except ImportError:
        logger.warning("pywin32 not fully installed, cannot restrict Windows file permissions.")
        WINDOWS_SECURITY_AVAILABLE = False
else:
    WINDOWS_SECURITY_AVAILABLE = False


def set_owner_only_permissions(filepath: str) -> bool:
    """
    Make *filepath* readable and writable by its owner only.

    Returns False when the permissions could not be restricted; the file
    itself is left as written.
    """
    if platform.system() == "Windows":
        return _set_windows_owner_only(filepath)
    try:
        os.chmod(filepath, stat.S_IRUSR | stat.S_IWUSR)  # 600
    except OSError as e:
        logger.warning(f"Failed to chmod {filepath}: {e}")
        return False
    return True


def _set_windows_owner_only(filepath: str) -> bool:
    """Replace the DACL of *filepath* with a single entry for the current user."""
    if not WINDOWS_SECURITY_AVAILABLE:
        logger.warning(f"Skipping Windows file permission setting for {filepath}: pywin32 not available.")
        return False

    try:
        user_sid, _, _ = win32security.LookupAccountName(None, win32api.GetUserName())

        dacl = win32security.ACL()
        dacl.AddAccessAllowedAce(
            win32security.ACL_REVISION,
            win32con.GENERIC_READ | win32con.GENERIC_WRITE,
            user_sid
        )

        handle = win32file.CreateFile(
            filepath,
            win32con.WRITE_DAC,
            win32file.FILE_SHARE_READ | win32file.FILE_SHARE_WRITE | win32file.FILE_SHARE_DELETE,
            None,
            win32con.OPEN_EXISTING,
            win32con.FILE_ATTRIBUTE_NORMAL,
            None
        )
        try:
            win32security.SetSecurityInfo(
                handle,
                win32security.SE_FILE_OBJECT,
                win32security.DACL_SECURITY_INFORMATION | win32security.PROTECTED_DACL_SECURITY_INFORMATION,
                None,
                None,
                dacl,
                None
            )
        finally:
            win32file.CloseHandle(handle)
    except win32api.error as e:
        logger.warning(f"Failed to restrict Windows file permissions for {filepath}: {e}")
        return False
    return True
