"""Prompt templates for Gemini."""

PHOTO_ANALYSIS_PROMPT = """Analyze this photograph and return a JSON object with the following structure. Focus on what would make this photo searchable: describe it as if someone is looking for specific moments, people, or scenes.

Return ONLY valid JSON, no markdown fencing:

{
  "description": "A rich natural language description (2-4 sentences). Describe the scene, who is in it, what they are doing, the setting, and the mood.",
  "people": [
    {
      "faceId": "face_1",
      "appearance": "Brief physical description (hair color, distinctive features, clothing)",
      "role": "bride|groom|bridesmaid|groomsman|flower_girl|ring_bearer|officiant|parent|child|guest|photographer|dj|musician|null",
      "expression": "smiling|laughing|crying|serious|surprised|neutral|etc",
      "ageRange": "child|teen|young_adult|adult|senior",
      "position": { "x": 0.0, "y": 0.0, "width": 0.0, "height": 0.0 }
    }
  ],
  "activities": ["dancing", "hugging", "toasting", "walking", "posing", "etc"],
  "objects": ["bouquet", "cake", "rings", "champagne glass", "etc"],
  "scene": "ceremony|reception|getting_ready|first_look|portraits|cocktail_hour|dance_floor|outdoor|indoor|church|beach|garden|ballroom|etc",
  "mood": "joyful|romantic|emotional|celebratory|intimate|playful|formal|candid|dramatic|serene",
  "composition": "close_up|medium_shot|wide_shot|detail|aerial|silhouette|group_shot|portrait|candid",
  "tags": ["keyword1", "keyword2", "..."]
}

Rules for the "people" array:
- Include ALL visible people, even partially visible ones
- For "position", use normalized coordinates (0.0 to 1.0) for the face bounding box relative to the image
- Identify roles from attire: white dress/veil = bride, suit with boutonniere = groom, matching dresses = bridesmaids, etc.
- If role cannot be determined, use null

Rules for "tags":
- Include 10-30 searchable keywords
- Include synonyms (e.g., "kids" AND "children", "hug" AND "embrace")
- Include emotional descriptors (e.g., "tearful", "happy", "excited")
- Include setting details (e.g., "outdoor", "sunset", "garden")
"""


SEARCH_RANKING_PROMPT = """Given these photo descriptions from a gallery, rank them by relevance to the search query: "{query}"

Photos:
{candidates}

Return ONLY a JSON array (no markdown fencing) of the top results sorted by relevance:
[{{"index": 0, "relevanceScore": 0.95, "matchReason": "brief reason"}}]

Rules:
- relevanceScore: 0.0 to 1.0
- Only include photos with relevanceScore > 0.3
- matchReason: 1 short sentence explaining why it matches
- Return at most 30 results
"""
