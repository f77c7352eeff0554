"""What the caller says on a reservation call."""

from rezkyoo.models import SearchQuery


def reservation_question(query: SearchQuery, caller_name: str) -> str:
    """The single scripted question asked to whoever picks up."""
    people = "person" if query.party_size == 1 else "people"
    if query.time is None:
        when = f"as soon as possible today, {query.spoken_date()}"
    else:
        when = f"on {query.spoken_date()} at {query.spoken_time()}"

    return (
        f"Hi, this is an automated assistant calling on behalf of {caller_name}. "
        f"Do you have a table for {query.party_size} {people} {when}? "
        "If you are fully booked, please tell me the closest time you can offer. "
        "If you would rather not receive calls like this, just say do not call."
    )


def voicemail_message(query: SearchQuery, caller_name: str, callback_number: str) -> str:
    """Message left on an answering machine."""
    message = (
        f"Hello, this is an automated assistant calling on behalf of {caller_name}. "
        f"We are looking for a table for {query.party_size} on {query.spoken_date()} "
        f"at {query.spoken_time()}."
    )
    if callback_number:
        digits = " ".join(callback_number.lstrip("+"))
        message += f" If you have availability, please call us back at {digits}."
    return message + " Thank you, goodbye."


def closing_remark(opted_out: bool = False) -> str:
    if opted_out:
        return "Understood, we will not call you again. Sorry for the interruption. Goodbye."
    return "Thank you very much for your help. Have a great day, goodbye."
