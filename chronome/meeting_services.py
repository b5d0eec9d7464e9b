"""Video-conferencing link detection for calendar events.

Pattern list follows MeetingBar's meeting services catalogue.
"""

from __future__ import annotations

import re
from typing import Optional

_RAW_PATTERNS: tuple[str, ...] = (
    # Google Meet
    r"https?://meet\.google\.com/(_meet/)?[a-z-]+",
    # Google Meet Stream
    r"https?://stream\.meet\.google\.com/stream/[a-z0-9-]+",
    # Zoom
    r"https://(?:[a-zA-Z0-9-.]+)?zoom(-x)?\.(?:us|com|com\.cn|de)/(?:my|[a-z]{1,2}|webinar)/[-a-zA-Z0-9()@:%_+.~#?&=/]*",
    # Zoom native
    r"zoommtg://([a-z0-9-.]+)?zoom(-x)?\.(?:us|com|com\.cn|de)/join[-a-zA-Z0-9()@:%_+.~#?&=/]*",
    # Zoom Gov
    r"https?://([a-z0-9.]+)?zoomgov\.com/j/[a-zA-Z0-9?&=]+",
    # Microsoft Teams
    r"https?://(gov.)?teams\.microsoft\.(com|us)/l/meetup-join/[a-zA-Z0-9_%/=\-+.?]+",
    # Webex
    r"https?://(?:[A-Za-z0-9-]+\.)?webex\.com(?:(?:/[-A-Za-z0-9]+/j\.php\?MTID=[A-Za-z0-9]+(?:&\S*)?)|(?:/(?:meet|join)/[A-Za-z0-9\-._@]+(?:\?\S*)?))",
    # Amazon Chime
    r"https?://([a-z0-9-.]+)?chime\.aws/[0-9]*",
    # Jitsi Meet
    r"https?://meet\.jit\.si/[^\s]*",
    # RingCentral
    r"https?://([a-z0-9.]+)?ringcentral\.com/[^\s]*",
    # GoToMeeting
    r"https?://([a-z0-9.]+)?gotomeeting\.com/[^\s]*",
    # GoToWebinar
    r"https?://([a-z0-9.]+)?gotowebinar\.com/[^\s]*",
    # BlueJeans
    r"https?://([a-z0-9.]+)?bluejeans\.com/[^\s]*",
    # 8x8
    r"https?://8x8\.vc/[^\s]*",
    # Demio
    r"https?://event\.demio\.com/[^\s]*",
    # Join.me
    r"https?://join\.me/[^\s]*",
    # Whereby
    r"https?://whereby\.com/[^\s]*",
    # UberConference
    r"https?://uberconference\.com/[^\s]*",
    # Blizz
    r"https?://go\.blizz\.com/[^\s]*",
    # TeamViewer Meeting
    r"https?://go\.teamviewer\.com/[^\s]*",
    # VSee
    r"https?://vsee\.com/[^\s]*",
    # StarLeaf
    r"https?://meet\.starleaf\.com/[^\s]*",
    # Google Duo
    r"https?://duo\.app\.goo\.gl/[^\s]*",
    # VooV Meeting
    r"https?://voovmeeting\.com/[^\s]*",
    # Facebook Workplace
    r"https?://([a-z0-9-.]+)?workplace\.com/groupcall/[^\s]+",
    # Skype
    r"https?://join\.skype\.com/[^\s]*",
    # Skype for Business
    r"https?://meet\.lync\.com/[^\s]*",
    # Skype for Business self-hosted
    r"https?://(meet|join)\.[^\s]*/[a-z0-9.]+/meet/[A-Za-z0-9./]+",
    # Lifesize
    r"https?://call\.lifesizecloud\.com/[^\s]*",
    # YouTube
    r"https?://((www|m)\.)?(youtube\.com|youtu\.be)/[^\s]*",
    # Vonage Meetings
    r"https?://meetings\.vonage\.com/[0-9]{9}",
    # Around
    r"https?://(meet\.)?around\.co/[^\s]*",
    # Jam
    r"https?://jam\.systems/[^\s]*",
    # Discord
    r"(http|https|discord)://(www\.)?(canary\.)?discord(app)?\.([a-zA-Z]{2,})(.+)?",
    # Blackboard Collaborate
    r"https?://us\.bbcollab\.com/[^\s]*",
    # CoScreen
    r"https?://join\.coscreen\.co/[^\s]*",
    # Vowel
    r"https?://([a-z0-9.]+)?vowel\.com/#/g/[^\s]*",
    # Zhumu
    r"https://welink\.zhumu\.com/j/[0-9]+\?pwd=[a-zA-Z0-9]+",
    # Lark
    r"https://vc\.larksuite\.com/j/[0-9]+",
    # Feishu
    r"https://vc\.feishu\.cn/j/[0-9]+",
    # Vimeo
    r"https://vimeo\.com/(showcase|event)/[0-9]+|https://venues\.vimeo\.com/[^\s]+",
    # Ovice
    r"https://([a-z0-9-.]+)?ovice\.(in|com)/[^\s]*",
    # FaceTime
    r"https://facetime\.apple\.com/join[^\s]*",
    # Chorus
    r"https?://go\.chorus\.ai/[^\s]+",
    # Pop
    r"https?://pop\.com/j/[0-9-]+",
    # Gong
    r"https?://([a-z0-9-.]+)?join\.gong\.io/[^\s]+",
    # Livestorm
    r"https?://app\.livestorm\.com/p/[^\s]+",
    # Luma
    r"https://lu\.ma/join/[^\s]*",
    # Preply
    r"https://preply\.com/[^\s]*",
    # UserZoom
    r"https://go\.userzoom\.com/participate/[a-z0-9-]+",
    # Venue
    r"https://app\.venue\.live/app/[^\s]*",
    # Teemyco
    r"https://app\.teemyco\.com/room/[^\s]*",
    # Demodesk
    r"https://demodesk\.com/[^\s]*",
    # Zoho Cliq
    r"https://cliq\.zoho\.eu/meetings/[^\s]*",
    # Google Hangouts
    r"https?://hangouts\.google\.com/[^\s]*",
    # Slack
    r"https?://app\.slack\.com/huddle/[A-Za-z0-9./]+",
    # Reclaim
    r"https?://reclaim\.ai/z/[A-Za-z0-9./]+",
    # Tuple
    r"https://tuple\.app/c/[^\s]*",
    # Gather
    r"https?://app.gather.town/app/[A-Za-z0-9]+/[A-Za-z0-9_%\-]+\?(spawnToken|meeting)=[^\s]*",
    # Pumble
    r"https?://meet\.pumble\.com/[a-z-]+",
    # Suit Conference
    r"https?://([a-z0-9.]+)?conference\.istesuit\.com/[^\s]*",
    # Doxy.me
    r"https://([a-z0-9.]+)?doxy\.me/[^\s]*",
    # Cal.com
    r"https?://app.cal\.com/video/[A-Za-z0-9./]+",
    # ZM Page
    r"https?://([a-zA-Z0-9.]+)\.zm\.page",
    # LiveKit
    r"https?://meet[a-zA-Z0-9.]*\.livekit\.io/rooms/[a-zA-Z0-9-#]+",
    # Meetecho
    r"https?://meetings\.conf\.meetecho\.com/.+",
    # StreamYard
    r"https://(?:www\.)?streamyard\.com/(?:guest/)?[a-z0-9]{8,13}(?:/|\?[^ \n]*)?",
)

MEETING_URL_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE) for pattern in _RAW_PATTERNS
)


def find_meeting_url(text: Optional[str]) -> Optional[str]:
    """Find the first video conferencing link in ``text``.

    Patterns are tried in catalogue order, so a Google Meet link wins over a
    generic YouTube link in the same text.
    """
    if not text:
        return None

    for pattern in MEETING_URL_PATTERNS:
        match = pattern.search(text)
        if match and match.group(0):
            return match.group(0)

    return None
