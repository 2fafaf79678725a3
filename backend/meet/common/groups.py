# meet/common/groups.py
# channel layer 그룹 이름 (허용 문자: 영숫자, -, _, .)


def user_group_name(user_id) -> str:
    return f"user_{user_id}"


def room_group_name(room_id) -> str:
    return f"signaling_{room_id}"
